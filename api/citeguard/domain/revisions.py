from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from citeguard.domain.errors import NotFoundError, RollbackAlreadyUsedError, RollbackExpiredError

ROLLBACK_WINDOW_HOURS = 24


def new_revision_window(now: datetime | None = None, *, hours: int = ROLLBACK_WINDOW_HOURS) -> datetime:
    current = now or datetime.now(timezone.utc)
    return current + timedelta(hours=hours)


def check_rollback_eligibility(revision: dict[str, Any] | None, *, now: datetime | None = None) -> dict[str, Any]:
    if not revision:
        raise NotFoundError("revision not found")

    if not revision.get("can_rollback"):
        raise RollbackAlreadyUsedError("revision cannot be rolled back")

    current = now or datetime.now(timezone.utc)
    expires_at = _as_utc(revision.get("rollback_expires_at"))
    if expires_at is None or current > expires_at:
        raise RollbackExpiredError("rollback window has expired")

    return revision


def _as_utc(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

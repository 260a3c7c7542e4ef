from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from citeguard.domain.errors import RollbackAlreadyUsedError
from citeguard.domain.revisions import check_rollback_eligibility

logger = logging.getLogger(__name__)


class RevisionService:
    def __init__(self, repository: Any) -> None:
        self.repository = repository

    async def rollback(
        self,
        revision_id: str,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        revision = await self.repository.get_revision(revision_id)
        check_rollback_eligibility(revision, now=now)

        restored = await self.repository.rollback_revision(revision_id, actor=actor)
        if restored is None:
            # Lost the race: another caller consumed the revision after the check.
            raise RollbackAlreadyUsedError("revision cannot be rolled back")

        logger.info(
            "revision rolled back revision_id=%s article_id=%s replacement_id=%s actor=%s",
            revision_id,
            restored["article_id"],
            restored.get("replacement_id"),
            actor,
        )
        return {
            "revision_id": revision_id,
            "article_id": restored["article_id"],
            "replacement_id": restored.get("replacement_id"),
            "rollback_revision_id": restored.get("rollback_revision_id"),
            "restored_citations": len(restored.get("previous_citations") or []),
        }

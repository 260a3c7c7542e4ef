from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from citeguard.domain.errors import NotFoundError, RollbackAlreadyUsedError, RollbackExpiredError
from citeguard.domain.revisions import check_rollback_eligibility, new_revision_window
from citeguard.services.revisions import RevisionService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeRevisionRepository:
    def __init__(self, revisions: dict[str, dict[str, Any]]) -> None:
        self.revisions = revisions
        self.articles: dict[str, dict[str, Any]] = {
            "article-1": {"detailed_content": "new", "external_citations": [{"url": "https://new.example"}]}
        }
        self.replacement_status: dict[str, str] = {"replacement-1": "applied"}
        self.steal_before_commit = False

    async def get_revision(self, revision_id: str) -> dict[str, Any] | None:
        revision = self.revisions.get(revision_id)
        return dict(revision) if revision else None

    async def rollback_revision(self, revision_id: str, *, actor: str | None) -> dict[str, Any] | None:
        revision = self.revisions[revision_id]
        if self.steal_before_commit:
            revision["can_rollback"] = False
        if not revision["can_rollback"]:
            return None
        revision["can_rollback"] = False
        self.articles[revision["article_id"]] = {
            "detailed_content": revision["previous_content"],
            "external_citations": revision["previous_citations"],
        }
        if revision.get("replacement_id"):
            self.replacement_status[revision["replacement_id"]] = "rolled_back"
        return {**revision, "rollback_revision_id": "revision-rollback"}


def _revision(**overrides: Any) -> dict[str, Any]:
    revision = {
        "id": "revision-1",
        "article_id": "article-1",
        "previous_content": "old",
        "previous_citations": [{"url": "https://old.example"}],
        "replacement_id": "replacement-1",
        "can_rollback": True,
        "rollback_expires_at": new_revision_window(NOW - timedelta(hours=1)),
    }
    revision.update(overrides)
    return revision


def test_new_revision_window_is_24_hours() -> None:
    assert new_revision_window(NOW) == NOW + timedelta(hours=24)


def test_check_rollback_eligibility_order() -> None:
    with pytest.raises(NotFoundError):
        check_rollback_eligibility(None, now=NOW)

    with pytest.raises(RollbackAlreadyUsedError):
        check_rollback_eligibility(_revision(can_rollback=False), now=NOW)

    expired = _revision(rollback_expires_at=NOW - timedelta(seconds=1))
    with pytest.raises(RollbackExpiredError) as exc_info:
        check_rollback_eligibility(expired, now=NOW)
    assert exc_info.value.reason == "expired"

    assert check_rollback_eligibility(_revision(), now=NOW)["id"] == "revision-1"


def test_rollback_restores_article_and_marks_replacement() -> None:
    repository = FakeRevisionRepository({"revision-1": _revision()})
    service = RevisionService(repository)

    result = asyncio.run(service.rollback("revision-1", actor="admin-1", now=NOW))

    assert result["article_id"] == "article-1"
    assert result["rollback_revision_id"] == "revision-rollback"
    assert result["restored_citations"] == 1
    assert repository.articles["article-1"]["detailed_content"] == "old"
    assert repository.replacement_status["replacement-1"] == "rolled_back"


def test_second_rollback_is_rejected_as_already_used() -> None:
    repository = FakeRevisionRepository({"revision-1": _revision()})
    service = RevisionService(repository)

    asyncio.run(service.rollback("revision-1", now=NOW))
    with pytest.raises(RollbackAlreadyUsedError) as exc_info:
        asyncio.run(service.rollback("revision-1", now=NOW))
    assert exc_info.value.reason == "already_used"


def test_concurrent_consumer_wins_the_race() -> None:
    repository = FakeRevisionRepository({"revision-1": _revision()})
    repository.steal_before_commit = True
    service = RevisionService(repository)

    with pytest.raises(RollbackAlreadyUsedError):
        asyncio.run(service.rollback("revision-1", now=NOW))
    assert repository.articles["article-1"]["detailed_content"] == "new"

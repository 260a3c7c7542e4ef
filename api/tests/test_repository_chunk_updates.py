from __future__ import annotations

import asyncio
from typing import Any

from citeguard.domain.chunks import ChunkCounters
from citeguard.services.repository import PostgresRepository


class RecordingPool:
    def __init__(self) -> None:
        self.statements: list[tuple[str, tuple[Any, ...]]] = []

    async def execute(self, query: str, *args: Any) -> str:
        self.statements.append((" ".join(query.split()), args))
        return "UPDATE 0"


def _repository(pool: RecordingPool) -> PostgresRepository:
    repository = PostgresRepository("postgresql://localhost/citeguard", min_pool_size=1, max_pool_size=1)

    async def get_pool() -> RecordingPool:
        return pool

    repository._get_pool = get_pool  # type: ignore[method-assign]
    return repository


def test_chunk_finalization_only_touches_processing_chunks() -> None:
    pool = RecordingPool()
    repository = _repository(pool)

    asyncio.run(repository.complete_chunk("chunk-1", ChunkCounters(progress_current=3, auto_applied_count=2)))
    asyncio.run(repository.fail_chunk("chunk-1", error_message="boom"))
    asyncio.run(repository.update_chunk_progress("chunk-1", ChunkCounters(progress_current=1)))

    assert len(pool.statements) == 3
    for query, args in pool.statements:
        assert "where id = $1::uuid and status = 'processing'" in query
        assert args[0] == "chunk-1"


def test_fail_chunk_truncates_long_error_messages() -> None:
    pool = RecordingPool()
    repository = _repository(pool)

    asyncio.run(repository.fail_chunk("chunk-1", error_message="x" * 5000))

    [(_, args)] = pool.statements
    assert len(args[1]) == 1000

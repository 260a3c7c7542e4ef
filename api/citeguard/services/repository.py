from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from citeguard.core.config import get_settings
from citeguard.domain.chunks import ChunkCounters, ChunkPlan, JobAggregate, STALL_RESET_MESSAGE
from citeguard.domain.compliance import Violation
from citeguard.domain.scoring import ApprovedDomainRecord, CitationScore


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class MachineCredentialRecord:
    module_db_id: str
    module_id: str
    scopes: list[str]
    key_hash: str


_JOB_COLUMNS = """
  id::text as id,
  status,
  progress_current,
  progress_total,
  articles_processed,
  auto_applied_count,
  manual_review_count,
  failed_count,
  total_chunks,
  completed_chunks,
  failed_chunks,
  error_message,
  created_by,
  started_at,
  completed_at,
  created_at,
  updated_at
"""

_CHUNK_COLUMNS = """
  id::text as id,
  parent_job_id::text as parent_job_id,
  chunk_number,
  status,
  items,
  progress_current,
  progress_total,
  auto_applied_count,
  manual_review_count,
  failed_count,
  error_message,
  started_at,
  completed_at,
  updated_at
"""

_REVISION_COLUMNS = """
  id::text as id,
  article_id::text as article_id,
  revision_type,
  previous_content,
  previous_citations,
  replacement_id::text as replacement_id,
  change_reason,
  can_rollback,
  rollback_expires_at,
  created_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              m.id::text as module_db_id,
              m.module_id,
              m.scopes,
              mc.key_hash
            from modules m
            join module_credentials mc on mc.module_id = m.id
            where m.module_id = $1
              and m.enabled = true
              and mc.is_active = true
              and mc.revoked_at is null
              and (mc.expires_at is null or mc.expires_at > now())
            """,
            module_id,
        )
        return [
            MachineCredentialRecord(
                module_db_id=row["module_db_id"],
                module_id=row["module_id"],
                scopes=list(row["scopes"] or []),
                key_hash=row["key_hash"],
            )
            for row in rows
        ]

    # Domain trust and usage

    async def get_approved_domain(self, domain: str) -> ApprovedDomainRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            "select domain, trust_score, is_allowed from approved_domains where domain = $1",
            domain,
        )
        if not row:
            return None
        return ApprovedDomainRecord(
            domain=row["domain"],
            trust_score=int(row["trust_score"] or 0),
            is_allowed=bool(row["is_allowed"]),
        )

    async def get_domain_usage(self, domain: str) -> int:
        pool = await self._get_pool()
        value = await pool.fetchval("select total_uses from domain_usage_stats where domain = $1", domain)
        return int(value or 0)

    async def list_domain_usage(self, domains: Sequence[str]) -> dict[str, int]:
        if not domains:
            return {}
        pool = await self._get_pool()
        rows = await pool.fetch(
            "select domain, total_uses from domain_usage_stats where domain = any($1::text[])",
            list(set(domains)),
        )
        return {row["domain"]: int(row["total_uses"] or 0) for row in rows}

    async def list_banned_domains(self) -> set[str]:
        pool = await self._get_pool()
        rows = await pool.fetch("select domain from approved_domains where is_allowed = false")
        return {row["domain"].lower() for row in rows if row["domain"]}

    async def insert_citation_score_logs(
        self,
        *,
        article_id: str | None,
        scores: Sequence[tuple[CitationScore, bool]],
    ) -> None:
        if not scores:
            return
        pool = await self._get_pool()
        await pool.executemany(
            """
            insert into citation_scoring_log (
              article_id,
              citation_url,
              domain,
              relevance_score,
              trust_score,
              novelty_boost,
              overuse_penalty,
              final_score,
              was_selected
            )
            values ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            [
                (
                    article_id,
                    score.url,
                    score.domain,
                    float(score.relevance_score),
                    score.trust_score,
                    score.novelty_boost,
                    float(score.overuse_penalty),
                    float(score.final_score),
                    was_selected,
                )
                for score, was_selected in scores
            ],
        )

    # Articles

    async def get_article(self, article_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  id::text as id,
                  headline,
                  slug,
                  language,
                  status,
                  detailed_content,
                  external_citations
                from blog_articles
                where id = $1::uuid
                """,
                article_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return self._article_row_to_dict(row) if row else None

    async def list_published_articles(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              headline,
              slug,
              language,
              status,
              detailed_content,
              external_citations
            from blog_articles
            where status = 'published'
            order by created_at asc
            """
        )
        return [self._article_row_to_dict(row) for row in rows]

    async def list_article_citation_urls(self, article_ids: Sequence[str]) -> dict[str, list[str]]:
        if not article_ids:
            return {}
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select id::text as id, external_citations
            from blog_articles
            where id = any($1::uuid[])
            """,
            list(set(article_ids)),
        )
        citation_map: dict[str, list[str]] = {}
        for row in rows:
            citations = self._coerce_json_list(row["external_citations"])
            citation_map[row["id"]] = [
                citation["url"] for citation in citations if isinstance(citation.get("url"), str)
            ]
        return citation_map

    async def find_articles_citing(self, urls: Sequence[str]) -> list[dict[str, str]]:
        if not urls:
            return []
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select a.id::text as article_id, c ->> 'url' as citation_url
            from blog_articles a
            cross join lateral jsonb_array_elements(coalesce(a.external_citations, '[]'::jsonb)) as c
            where c ->> 'url' = any($1::text[])
            order by a.created_at asc
            """,
            list(set(urls)),
        )
        return [{"article_id": row["article_id"], "citation_url": row["citation_url"]} for row in rows]

    async def apply_citation_replacement(
        self,
        *,
        article_id: str,
        original_url: str,
        replacement_url: str,
        replacement_source: str | None,
        replacement_reason: str,
        confidence_score: float,
        job_id: str | None,
        rollback_expires_at: datetime,
        replacement_domain: str | None = None,
    ) -> dict[str, Any] | None:
        """Overwrite the article's citation list; None when the URL is already gone."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                article = await conn.fetchrow(
                    """
                    select id::text as id, detailed_content, external_citations
                    from blog_articles
                    where id = $1::uuid
                    for update
                    """,
                    article_id,
                )
                if not article:
                    raise RepositoryNotFoundError("article not found")

                citations = self._coerce_json_list(article["external_citations"])
                if not any(citation.get("url") == original_url for citation in citations):
                    return None

                new_citations = [
                    {**citation, "url": replacement_url, "source": replacement_source or citation.get("source")}
                    if citation.get("url") == original_url
                    else citation
                    for citation in citations
                ]
                content = article["detailed_content"] or ""
                new_content = content.replace(original_url, replacement_url)

                replacement_id = await conn.fetchval(
                    """
                    insert into dead_link_replacements (
                      original_url,
                      replacement_url,
                      replacement_source,
                      replacement_reason,
                      confidence_score,
                      status,
                      suggested_by,
                      article_id,
                      job_id,
                      applied_at
                    )
                    values ($1, $2, $3, $4, $5, 'applied', 'auto', $6::uuid, $7::uuid, now())
                    returning id::text
                    """,
                    original_url,
                    replacement_url,
                    replacement_source,
                    replacement_reason,
                    confidence_score,
                    article_id,
                    job_id,
                )
                revision_id = await conn.fetchval(
                    """
                    insert into article_revisions (
                      article_id,
                      revision_type,
                      previous_content,
                      previous_citations,
                      replacement_id,
                      change_reason,
                      can_rollback,
                      rollback_expires_at
                    )
                    values ($1::uuid, 'citation_replacement', $2, $3::jsonb, $4::uuid, $5, true, $6)
                    returning id::text
                    """,
                    article_id,
                    content,
                    json.dumps(citations),
                    replacement_id,
                    f"Replaced citation: {original_url}",
                    rollback_expires_at,
                )
                await conn.execute(
                    """
                    update blog_articles
                    set
                      external_citations = $2::jsonb,
                      detailed_content = $3,
                      updated_at = now(),
                      date_modified = now()
                    where id = $1::uuid
                    """,
                    article_id,
                    json.dumps(new_citations),
                    new_content,
                )
                if replacement_domain:
                    await self._increment_domain_usage(conn=conn, domain=replacement_domain, by=1)
                return {"replacement_id": replacement_id, "revision_id": revision_id}

    async def record_replacement_suggestion(
        self,
        *,
        article_id: str,
        original_url: str,
        replacement_url: str,
        replacement_source: str | None,
        replacement_reason: str,
        confidence_score: float,
        job_id: str | None,
    ) -> str:
        pool = await self._get_pool()
        return await pool.fetchval(
            """
            insert into dead_link_replacements (
              original_url,
              replacement_url,
              replacement_source,
              replacement_reason,
              confidence_score,
              status,
              suggested_by,
              article_id,
              job_id
            )
            values ($1, $2, $3, $4, $5, 'pending', 'auto', $6::uuid, $7::uuid)
            returning id::text
            """,
            original_url,
            replacement_url,
            replacement_source,
            replacement_reason,
            confidence_score,
            article_id,
            job_id,
        )

    # Replacement jobs and chunks

    async def create_replacement_job(self, *, plans: Sequence[ChunkPlan], created_by: str | None) -> dict[str, Any]:
        if not plans:
            raise RepositoryValidationError("replacement job requires at least one chunk")
        pool = await self._get_pool()
        progress_total = sum(len(plan.items) for plan in plans)
        async with pool.acquire() as conn:
            async with conn.transaction():
                job_row = await conn.fetchrow(
                    f"""
                    insert into citation_replacement_jobs (
                      status,
                      progress_total,
                      total_chunks,
                      created_by
                    )
                    values ('pending', $1, $2, $3)
                    returning {_JOB_COLUMNS}
                    """,
                    progress_total,
                    len(plans),
                    created_by,
                )
                await conn.executemany(
                    """
                    insert into citation_replacement_chunks (
                      parent_job_id,
                      chunk_number,
                      status,
                      items,
                      progress_total
                    )
                    values ($1::uuid, $2, 'pending', $3::jsonb, $4)
                    """,
                    [
                        (
                            job_row["id"],
                            plan.chunk_number,
                            json.dumps([item.as_dict() for item in plan.items]),
                            len(plan.items),
                        )
                        for plan in plans
                    ],
                )
                return self._job_row_to_dict(job_row)

    async def get_replacement_job(self, job_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {_JOB_COLUMNS} from citation_replacement_jobs where id = $1::uuid",
                job_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return self._job_row_to_dict(row) if row else None

    async def list_active_replacement_jobs(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_JOB_COLUMNS}
            from citation_replacement_jobs
            where status in ('pending', 'running')
            order by created_at asc
            """
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def list_replacement_chunks(self, job_id: str) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {_CHUNK_COLUMNS}
            from citation_replacement_chunks
            where parent_job_id = $1::uuid
            order by chunk_number asc
            """,
            job_id,
        )
        return [self._chunk_row_to_dict(row) for row in rows]

    async def reset_stalled_chunks(self, *, job_id: str, stalled_before: datetime) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            update citation_replacement_chunks
            set
              status = 'pending',
              error_message = $3,
              updated_at = now()
            where parent_job_id = $1::uuid
              and status = 'processing'
              and updated_at < $2
            returning {_CHUNK_COLUMNS}
            """,
            job_id,
            stalled_before,
            STALL_RESET_MESSAGE,
        )
        return [self._chunk_row_to_dict(row) for row in rows]

    async def claim_next_pending_chunk(self, job_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    with next_chunk as (
                      select id
                      from citation_replacement_chunks
                      where parent_job_id = $1::uuid and status = 'pending'
                      order by chunk_number asc
                      limit 1
                      for update skip locked
                    )
                    update citation_replacement_chunks c
                    set
                      status = 'processing',
                      started_at = now(),
                      updated_at = now()
                    from next_chunk n
                    where c.id = n.id
                    returning {_CHUNK_COLUMNS}
                    """,
                    job_id,
                )
                if not row:
                    return None
                await conn.execute(
                    """
                    update citation_replacement_jobs
                    set
                      status = 'running',
                      started_at = coalesce(started_at, now()),
                      updated_at = now()
                    where id = $1::uuid and status in ('pending', 'running')
                    """,
                    job_id,
                )
                return self._chunk_row_to_dict(row)

    async def update_chunk_progress(self, chunk_id: str, counters: ChunkCounters) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update citation_replacement_chunks
            set
              progress_current = $2,
              auto_applied_count = $3,
              manual_review_count = $4,
              failed_count = $5,
              updated_at = now()
            where id = $1::uuid and status = 'processing'
            """,
            chunk_id,
            counters.progress_current,
            counters.auto_applied_count,
            counters.manual_review_count,
            counters.failed_count,
        )

    async def complete_chunk(self, chunk_id: str, counters: ChunkCounters) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update citation_replacement_chunks
            set
              status = 'completed',
              progress_current = $2,
              auto_applied_count = $3,
              manual_review_count = $4,
              failed_count = $5,
              error_message = null,
              completed_at = now(),
              updated_at = now()
            where id = $1::uuid and status = 'processing'
            """,
            chunk_id,
            counters.progress_current,
            counters.auto_applied_count,
            counters.manual_review_count,
            counters.failed_count,
        )

    async def fail_chunk(self, chunk_id: str, *, error_message: str) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update citation_replacement_chunks
            set
              status = 'failed',
              error_message = $2,
              completed_at = now(),
              updated_at = now()
            where id = $1::uuid and status = 'processing'
            """,
            chunk_id,
            error_message[:1000],
        )

    async def update_job_aggregate(self, job_id: str, aggregate: JobAggregate) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update citation_replacement_jobs
            set
              total_chunks = $2,
              completed_chunks = $3,
              failed_chunks = $4,
              progress_current = $5,
              articles_processed = $6,
              auto_applied_count = $7,
              manual_review_count = $8,
              failed_count = $9,
              updated_at = now()
            where id = $1::uuid
            """,
            job_id,
            aggregate.total_chunks,
            aggregate.completed_chunks,
            aggregate.failed_chunks,
            aggregate.progress_current,
            aggregate.articles_processed,
            aggregate.auto_applied_count,
            aggregate.manual_review_count,
            aggregate.failed_count,
        )

    async def finalize_job(self, job_id: str, *, status: str, error_message: str | None = None) -> None:
        if status not in {"completed", "failed"}:
            raise RepositoryValidationError("job can only be finalized as completed or failed")
        pool = await self._get_pool()
        await pool.execute(
            """
            update citation_replacement_jobs
            set
              status = $2,
              error_message = $3,
              completed_at = now(),
              updated_at = now()
            where id = $1::uuid
            """,
            job_id,
            status,
            error_message[:1000] if error_message else None,
        )

    async def restart_chunk(self, chunk_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"""
                        update citation_replacement_chunks
                        set
                          status = 'pending',
                          progress_current = 0,
                          auto_applied_count = 0,
                          manual_review_count = 0,
                          failed_count = 0,
                          error_message = null,
                          started_at = null,
                          completed_at = null,
                          updated_at = now()
                        where id = $1::uuid and status = 'failed'
                        returning {_CHUNK_COLUMNS}
                        """,
                        chunk_id,
                    )
                    if not row:
                        exists = await conn.fetchval(
                            "select 1 from citation_replacement_chunks where id = $1::uuid",
                            chunk_id,
                        )
                        if not exists:
                            raise RepositoryNotFoundError("chunk not found")
                        raise RepositoryConflictError("only failed chunks can be restarted")
                    await self._reopen_job(conn=conn, job_id=row["parent_job_id"])
                    return self._chunk_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("chunk not found") from exc

    async def restart_failed_chunks(self, job_id: str) -> int:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    exists = await conn.fetchval(
                        "select 1 from citation_replacement_jobs where id = $1::uuid for update",
                        job_id,
                    )
                    if not exists:
                        raise RepositoryNotFoundError("job not found")
                    rows = await conn.fetch(
                        """
                        update citation_replacement_chunks
                        set
                          status = 'pending',
                          progress_current = 0,
                          auto_applied_count = 0,
                          manual_review_count = 0,
                          failed_count = 0,
                          error_message = null,
                          started_at = null,
                          completed_at = null,
                          updated_at = now()
                        where parent_job_id = $1::uuid and status = 'failed'
                        returning id
                        """,
                        job_id,
                    )
                    if not rows:
                        raise RepositoryConflictError("job has no failed chunks to restart")
                    await self._reopen_job(conn=conn, job_id=job_id)
                    return len(rows)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    # Revisions

    async def get_revision(self, revision_id: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {_REVISION_COLUMNS} from article_revisions where id = $1::uuid",
                revision_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        return self._revision_row_to_dict(row) if row else None

    async def rollback_revision(self, revision_id: str, *, actor: str | None) -> dict[str, Any] | None:
        """Consume the revision and restore the article; None if it was consumed concurrently."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    update article_revisions
                    set can_rollback = false
                    where id = $1::uuid and can_rollback = true and rollback_expires_at >= now()
                    returning {_REVISION_COLUMNS}
                    """,
                    revision_id,
                )
                if not row:
                    return None
                revision = self._revision_row_to_dict(row)

                await conn.execute(
                    """
                    update blog_articles
                    set
                      detailed_content = $2,
                      external_citations = $3::jsonb,
                      updated_at = now()
                    where id = $1::uuid
                    """,
                    revision["article_id"],
                    revision["previous_content"],
                    json.dumps(revision["previous_citations"]),
                )
                if revision["replacement_id"]:
                    await conn.execute(
                        """
                        update dead_link_replacements
                        set status = 'rolled_back', updated_at = now()
                        where id = $1::uuid
                        """,
                        revision["replacement_id"],
                    )
                rollback_revision_id = await conn.fetchval(
                    """
                    insert into article_revisions (
                      article_id,
                      revision_type,
                      previous_content,
                      change_reason,
                      can_rollback,
                      created_by
                    )
                    values ($1::uuid, 'rollback', '', $2, false, $3)
                    returning id::text
                    """,
                    revision["article_id"],
                    f"Rolled back revision {revision_id}",
                    actor,
                )
                revision["rollback_revision_id"] = rollback_revision_id
                return revision

    # Compliance

    async def list_open_alerts(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              id::text as id,
              article_id::text as article_id,
              citation_url,
              alert_type,
              severity,
              created_at
            from citation_compliance_alerts
            where resolved_at is null
            order by created_at asc
            """
        )
        return [dict(row) for row in rows]

    async def create_alerts(self, violations: Sequence[Violation]) -> int:
        if not violations:
            return 0
        pool = await self._get_pool()
        created = 0
        async with pool.acquire() as conn:
            async with conn.transaction():
                for violation in violations:
                    inserted = await conn.fetchval(
                        """
                        insert into citation_compliance_alerts (
                          article_id,
                          citation_url,
                          alert_type,
                          severity,
                          article_title
                        )
                        values ($1::uuid, $2, $3, $4, $5)
                        on conflict (article_id, citation_url) where resolved_at is null do nothing
                        returning id
                        """,
                        violation.article_id,
                        violation.citation_url,
                        violation.violation_type,
                        violation.severity,
                        violation.article_title,
                    )
                    if inserted is not None:
                        created += 1
        return created

    async def resolve_alerts(self, alert_ids: Sequence[str], *, note: str) -> int:
        if not alert_ids:
            return 0
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            update citation_compliance_alerts
            set resolved_at = now(), resolution_notes = $2
            where id = any($1::uuid[]) and resolved_at is null
            returning id
            """,
            list(alert_ids),
            note,
        )
        return len(rows)

    async def insert_hygiene_report(self, report: dict[str, Any]) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            insert into citation_hygiene_reports (
              scan_date,
              total_articles_scanned,
              total_citations_scanned,
              banned_citations_found,
              broken_citations_found,
              missing_inline_found,
              overused_domains_found,
              articles_with_violations,
              articles_failed,
              compliance_score,
              violations_by_domain,
              top_offenders,
              article_results,
              scan_duration_ms,
              next_scan_scheduled
            )
            values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, $12::jsonb, $13::jsonb, $14, $15)
            returning id::text as id, created_at
            """,
            report["scan_date"],
            report["total_articles_scanned"],
            report["total_citations_scanned"],
            report["banned_citations_found"],
            report["broken_citations_found"],
            report["missing_inline_found"],
            report["overused_domains_found"],
            report["articles_with_violations"],
            report["articles_failed"],
            report["compliance_score"],
            json.dumps(report["violations_by_domain"]),
            json.dumps(report["top_offenders"]),
            json.dumps(report["article_results"]),
            report["scan_duration_ms"],
            report["next_scan_scheduled"],
        )
        return {**report, "id": row["id"], "created_at": row["created_at"]}

    async def get_latest_hygiene_report(self) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              id::text as id,
              scan_date,
              total_articles_scanned,
              total_citations_scanned,
              banned_citations_found,
              broken_citations_found,
              missing_inline_found,
              overused_domains_found,
              articles_with_violations,
              articles_failed,
              compliance_score,
              violations_by_domain,
              top_offenders,
              article_results,
              scan_duration_ms,
              next_scan_scheduled,
              created_at
            from citation_hygiene_reports
            order by scan_date desc
            limit 1
            """
        )
        if not row:
            return None
        report = dict(row)
        report["compliance_score"] = float(report["compliance_score"])
        report["violations_by_domain"] = self._coerce_json_dict(report["violations_by_domain"])
        report["top_offenders"] = self._coerce_json_list(report["top_offenders"])
        report["article_results"] = self._coerce_json_list(report["article_results"])
        return report

    # Internals

    async def _increment_domain_usage(self, *, conn: asyncpg.Connection, domain: str, by: int) -> int:
        value = await conn.fetchval(
            """
            insert into domain_usage_stats (domain, total_uses, updated_at)
            values ($1, $2, now())
            on conflict (domain) do update
            set
              total_uses = domain_usage_stats.total_uses + excluded.total_uses,
              updated_at = now()
            returning total_uses
            """,
            domain,
            by,
        )
        return int(value or 0)

    async def _reopen_job(self, *, conn: asyncpg.Connection, job_id: str) -> None:
        await conn.execute(
            """
            update citation_replacement_jobs
            set
              status = 'running',
              failed_chunks = 0,
              error_message = null,
              completed_at = null,
              updated_at = now()
            where id = $1::uuid
            """,
            job_id,
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("CG_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @classmethod
    def _article_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "headline": row["headline"],
            "slug": row["slug"],
            "language": row["language"],
            "status": row["status"],
            "detailed_content": row["detailed_content"] or "",
            "external_citations": cls._coerce_json_list(row["external_citations"]),
        }

    @staticmethod
    def _job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return dict(row)

    @classmethod
    def _chunk_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        chunk = dict(row)
        chunk["items"] = cls._coerce_json_list(chunk.get("items"))
        return chunk

    @classmethod
    def _revision_row_to_dict(cls, row: asyncpg.Record) -> dict[str, Any]:
        revision = dict(row)
        revision["previous_citations"] = cls._coerce_json_list(revision.get("previous_citations"))
        return revision

    @staticmethod
    def _coerce_json_list(value: Any) -> list[dict[str, Any]]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )

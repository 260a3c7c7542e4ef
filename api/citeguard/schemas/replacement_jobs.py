from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

JobStatus = Literal["pending", "running", "completed", "failed"]
ChunkStatus = Literal["pending", "processing", "completed", "failed"]


class ReplacementItemIn(BaseModel):
    article_id: str = Field(min_length=1)
    citation_url: str = Field(min_length=1)


class ReplacementJobCreateRequest(BaseModel):
    items: list[ReplacementItemIn] = Field(default_factory=list)
    citation_urls: list[str] = Field(default_factory=list)
    chunk_size: int | None = Field(default=None, ge=1, le=100)

    @model_validator(mode="after")
    def require_work(self) -> "ReplacementJobCreateRequest":
        if not self.items and not self.citation_urls:
            raise ValueError("items or citation_urls is required")
        return self


class ReplacementChunkOut(BaseModel):
    id: str
    parent_job_id: str
    chunk_number: int
    status: ChunkStatus
    items: list[dict[str, Any]] = Field(default_factory=list)
    progress_current: int = 0
    progress_total: int = 0
    auto_applied_count: int = 0
    manual_review_count: int = 0
    failed_count: int = 0
    error_message: str | None = None
    stalled: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


class ReplacementJobOut(BaseModel):
    id: str
    status: JobStatus
    progress_current: int = 0
    progress_total: int = 0
    articles_processed: int = 0
    auto_applied_count: int = 0
    manual_review_count: int = 0
    failed_count: int = 0
    total_chunks: int = 0
    completed_chunks: int = 0
    failed_chunks: int = 0
    error_message: str | None = None
    created_by: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReplacementJobStatusOut(ReplacementJobOut):
    percentage: int = 0
    chunks: list[ReplacementChunkOut] = Field(default_factory=list)


class PollSummaryOut(BaseModel):
    jobs_checked: int
    chunks_processed: int
    chunks_rescued: int
    jobs_finalized: int
    jobs_failed: int = 0


class RestartOut(BaseModel):
    job_id: str
    restarted_chunks: int
    poll: PollSummaryOut

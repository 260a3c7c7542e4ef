from pydantic import BaseModel


class RollbackOut(BaseModel):
    revision_id: str
    article_id: str
    replacement_id: str | None = None
    rollback_revision_id: str | None = None
    restored_citations: int

from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


PostingOutcome = Literal["POSTED", "NEEDS_REVIEW", "ERROR"]


class PostingResult(BaseModel):
    invoice_id: UUID
    outcome: PostingOutcome
    journal_entry_id: UUID | None = None
    message: str | None = None
    warnings: list[str] = Field(default_factory=list)


class AutoPostPendingRequest(BaseModel):
    business_profile_id: UUID
    limit: int = Field(default=100, ge=1, le=1000)


class AutoPostPendingResult(BaseModel):
    processed: int = 0
    posted: int = 0
    needs_review: int = 0
    errors: int = 0
    results: list[PostingResult] = Field(default_factory=list)


class PostingStats(BaseModel):
    business_profile_id: UUID
    posted: int = 0
    unposted: int = 0
    needs_review: int = 0
    error: int = 0

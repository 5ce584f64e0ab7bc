"""
Usage Ledger Model
==================

UsageRecord: append-only, one row per tracked operation
(inference / download / view). Aggregated by the usage ledger for
limit checks and dashboard summaries; never updated after insert.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Index
from sqlmodel import Column, Field, SQLModel, Text

from modelmarket.core.timeutil import utcnow


class UsageRecord(SQLModel, table=True):
    __tablename__ = "usage_records"
    __table_args__ = (
        Index("idx_usage_user_model_date", "user_id", "model_id", "date"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=64)
    model_id: str = Field(max_length=64)
    operation: str = Field(max_length=32)
    date: datetime = Field(default_factory=utcnow)
    request_count: int = Field(default=1)
    token_count: int = Field(default=0)
    cost: float = Field(default=0.0)
    response_time_ms: int = Field(default=0)
    success: bool = Field(default=True)
    error_type: Optional[str] = Field(default=None, nullable=True, max_length=128)
    metadata_json: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

"""
API Key Model
=============

SQLModel table for persistent API key storage.
Keys are stored as HMAC-SHA256 hashes; the raw key is shown once
at creation time and never persisted.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from modelmarket.core.timeutil import utcnow


class APIKey(SQLModel, table=True):
    """
    Persistent API key record.

    Key format is ``mm_<key_id>_<secret>``. ``key_prefix`` holds the key_id
    for O(1) lookup; ``key_hash`` is HMAC-SHA256 of the secret.
    """

    __tablename__ = "api_keys"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=64)
    key_prefix: str = Field(unique=True, index=True, max_length=16)
    key_hash: str = Field(max_length=128)
    label: Optional[str] = Field(default=None, nullable=True, max_length=255)
    is_active: bool = Field(default=True, index=True)
    last_used_at: Optional[datetime] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utcnow)
    revoked_at: Optional[datetime] = Field(default=None, nullable=True)

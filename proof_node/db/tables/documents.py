"""Documents as seen by the proof engine: id, name and content hash."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentRow(SQLModel, table=True):
    __tablename__ = "documents"

    id: str = Field(primary_key=True)
    file_name: str
    file_hash: Optional[str] = Field(default=None, index=True)
    file_size: Optional[int] = Field(default=None)
    uploaded_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))

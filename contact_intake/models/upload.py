# contact_intake/models/upload.py
"""
Durable record tracking one bulk contact upload from submission to outcome.
"""

from __future__ import annotations

import enum
import math
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db, new_uuid


class ContactUploadStatus(str, enum.Enum):
    """Lifecycle states for an upload job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ContactUploadStatus.COMPLETED, ContactUploadStatus.FAILED)


class ContactUpload(BaseModel):
    """
    Metadata, counters and row errors for a single submitted spreadsheet.

    ``errors`` holds an ordered list of ``{"row", "message", "data"}`` entries
    and stays ``None`` when the upload finished without row failures.
    """

    __tablename__ = "contact_uploads"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(db.String(36), nullable=False, index=True)
    uploaded_by: Mapped[str] = mapped_column(db.String(36), nullable=False)
    contact_group_id: Mapped[str | None] = mapped_column(
        ForeignKey("contact_groups.id", ondelete="SET NULL"),
        nullable=True,
    )
    submission_id: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    filename: Mapped[str] = mapped_column(db.String(255), nullable=False)
    original_filename: Mapped[str] = mapped_column(db.String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    status: Mapped[ContactUploadStatus] = mapped_column(
        Enum(ContactUploadStatus, name="contact_upload_status_enum"),
        nullable=False,
        default=ContactUploadStatus.PENDING,
        index=True,
    )
    total_records: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    processed_records: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    accepted_records: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    rejected_records: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    errors: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    contact_group = relationship("ContactGroup", foreign_keys=[contact_group_id])

    __table_args__ = (
        CheckConstraint("file_size >= 0", name="ck_contact_uploads_file_size"),
        UniqueConstraint("tenant_id", "submission_id", name="uq_contact_uploads_tenant_submission"),
        Index("idx_contact_uploads_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self):
        return f"<ContactUpload {self.id} {self.status.value}>"

    @property
    def completion_percentage(self) -> int:
        if not self.total_records:
            return 0
        # Half-up rounding so 12.5% reports as 13%.
        return math.floor((self.processed_records or 0) / self.total_records * 100 + 0.5)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "uploaded_by": self.uploaded_by,
            "contact_group_id": self.contact_group_id,
            "filename": self.filename,
            "original_filename": self.original_filename,
            "file_size": self.file_size,
            "status": self.status.value,
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "accepted_records": self.accepted_records,
            "rejected_records": self.rejected_records,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

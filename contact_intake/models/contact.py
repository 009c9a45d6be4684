# contact_intake/models/contact.py
"""
Tenant-scoped contact records plus contact groups, their typed field
definitions, and the membership edges carrying per-group field values.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db, new_uuid, utcnow


class ContactSourceType(str, enum.Enum):
    """How a contact first entered the store."""

    MANUAL = "manual"
    BULK_UPLOAD = "bulk_upload"


class FieldType(str, enum.Enum):
    """Supported types for tenant-defined group fields."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    SELECT = "select"
    EMAIL = "email"
    PHONE = "phone"


class Contact(BaseModel):
    """
    Identity-resolvable contact scoped to a tenant.

    Phone is stored in canonical E.164 whenever it could be normalized; the
    value as typed is kept in ``metadata_json['original_phone']``.
    """

    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(db.String(36), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(db.String(32), nullable=True)
    country_code: Mapped[str | None] = mapped_column(db.String(8), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    first_name: Mapped[str] = mapped_column(db.String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(db.String(100), nullable=False, default="")
    source_type: Mapped[ContactSourceType] = mapped_column(
        Enum(ContactSourceType, name="contact_source_type_enum"),
        nullable=False,
        default=ContactSourceType.MANUAL,
    )
    source_id: Mapped[str | None] = mapped_column(
        ForeignKey("contact_uploads.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    channel_identifiers: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    preferences: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes, so the attribute carries a suffix.
    metadata_json: Mapped[dict] = mapped_column("metadata", db.JSON, nullable=False, default=dict)

    group_links = relationship(
        "ContactGroupAssociation",
        back_populates="contact",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_contacts_tenant_phone"),
        UniqueConstraint("tenant_id", "email", name="uq_contacts_tenant_email"),
        Index("idx_contacts_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self):
        return f"<Contact {self.id} tenant={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "phone": self.phone,
            "country_code": self.country_code,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "source_type": self.source_type.value,
            "source_id": self.source_id,
            "channel_identifiers": dict(self.channel_identifiers or {}),
            "preferences": dict(self.preferences or {}),
            "metadata": dict(self.metadata_json or {}),
            "group_ids": [link.contact_group_id for link in self.group_links],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ContactGroup(BaseModel):
    """Named collection scoping a tenant's field schema and memberships."""

    __tablename__ = "contact_groups"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id: Mapped[str] = mapped_column(db.String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(db.String(36), nullable=True)

    fields = relationship(
        "ContactGroupField",
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ContactGroupField.created_at",
    )
    memberships = relationship(
        "ContactGroupAssociation",
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_contact_groups_tenant_name"),)

    def __repr__(self):
        return f"<ContactGroup {self.name}>"

    def to_dict(self, *, contact_count: int | None = None) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "contact_count": contact_count if contact_count is not None else len(self.memberships),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ContactGroupField(BaseModel):
    """One typed, tenant-defined field belonging to a contact group."""

    __tablename__ = "contact_group_fields"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    contact_group_id: Mapped[str] = mapped_column(
        ForeignKey("contact_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    field_type: Mapped[FieldType] = mapped_column(Enum(FieldType, name="contact_field_type_enum"), nullable=False)
    is_required: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    default_value: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    validation_rules: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    created_by: Mapped[str | None] = mapped_column(db.String(36), nullable=True)

    group = relationship("ContactGroup", back_populates="fields")

    __table_args__ = (UniqueConstraint("contact_group_id", "name", name="uq_contact_group_fields_group_name"),)

    def __repr__(self):
        return f"<ContactGroupField {self.name} ({self.field_type.value})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contact_group_id": self.contact_group_id,
            "name": self.name,
            "field_type": self.field_type.value,
            "is_required": self.is_required,
            "default_value": self.default_value,
            "validation_rules": dict(self.validation_rules or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ContactGroupAssociation(db.Model):
    """Membership edge between a contact and a group, keyed by both ids."""

    __tablename__ = "contact_group_associations"

    contact_group_id: Mapped[str] = mapped_column(
        ForeignKey("contact_groups.id", ondelete="CASCADE"),
        primary_key=True,
    )
    contact_id: Mapped[str] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    field_values: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    created_by: Mapped[str | None] = mapped_column(db.String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    group = relationship("ContactGroup", back_populates="memberships")
    contact = relationship("Contact", back_populates="group_links")

    def to_dict(self) -> dict:
        return {
            "contact_group_id": self.contact_group_id,
            "contact_id": self.contact_id,
            "field_values": dict(self.field_values or {}),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

# contact_intake/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .contact import (
    Contact,
    ContactGroup,
    ContactGroupAssociation,
    ContactGroupField,
    ContactSourceType,
    FieldType,
)
from .upload import ContactUpload, ContactUploadStatus

__all__ = [
    "db",
    "BaseModel",
    "Contact",
    "ContactGroup",
    "ContactGroupAssociation",
    "ContactGroupField",
    "ContactSourceType",
    "ContactUpload",
    "ContactUploadStatus",
    "FieldType",
]

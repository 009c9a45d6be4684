"""
Service layer package
"""

from .contact_service import ContactService

__all__ = ["ContactService"]

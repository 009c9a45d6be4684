"""
Deterministic identity resolution for contacts within a tenant.

A contact matches when its stored email equals the normalized email, or its
stored phone equals any of the supplied phone spellings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

from sqlalchemy import or_
from sqlalchemy.orm import Session

from contact_intake.models import Contact


def normalize_email(value: object | None) -> str | None:
    """
    Normalize email for storage and matching.

    - Trim whitespace
    - Lower-case entire address
    """

    if value is None:
        return None
    token = str(value).strip()
    if not token:
        return None
    return token.lower()


@dataclass(frozen=True)
class IdentityMatch:
    """
    Outcome from resolving a contact identity.

    Attributes:
        contact: Earliest-created matching contact, if any.
        matched_on: Which identifier produced the match ('email', 'phone',
            'both') or 'none'.
    """

    contact: Contact | None
    matched_on: Literal["email", "phone", "both", "none"]

    @property
    def is_match(self) -> bool:
        return self.contact is not None


def resolve_identity(
    session: Session,
    tenant_id: str,
    *,
    email: object | None = None,
    phone_variations: Iterable[str] | None = None,
    exclude_contact_id: str | None = None,
) -> IdentityMatch:
    """
    Look up at most one existing contact in ``tenant_id``.

    Raises ``ValueError`` when neither an email nor a phone variation is
    supplied; that is a caller error rather than a "no match".
    """

    normalized_email = normalize_email(email)
    variants = tuple(dict.fromkeys(v for v in (phone_variations or ()) if v))
    if not normalized_email and not variants:
        raise ValueError("Identity resolution requires an email or at least one phone variation.")

    clauses = []
    if normalized_email:
        clauses.append(Contact.email == normalized_email)
    if variants:
        clauses.append(Contact.phone.in_(variants))

    query = session.query(Contact).filter(Contact.tenant_id == tenant_id, or_(*clauses))
    if exclude_contact_id is not None:
        query = query.filter(Contact.id != exclude_contact_id)
    contact = query.order_by(Contact.created_at.asc(), Contact.id.asc()).first()

    if contact is None:
        return IdentityMatch(contact=None, matched_on="none")

    email_hit = bool(normalized_email) and contact.email == normalized_email
    phone_hit = bool(variants) and contact.phone in variants
    if email_hit and phone_hit:
        matched_on = "both"
    elif email_hit:
        matched_on = "email"
    else:
        matched_on = "phone"
    return IdentityMatch(contact=contact, matched_on=matched_on)


def resolve(
    session: Session,
    tenant_id: str,
    *,
    email: object | None = None,
    phone_variations: Iterable[str] | None = None,
) -> Contact | None:
    """Convenience wrapper returning only the matched contact."""

    return resolve_identity(session, tenant_id, email=email, phone_variations=phone_variations).contact

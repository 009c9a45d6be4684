"""
Group membership writes.

Memberships are keyed by ``(contact_group_id, contact_id)`` and written with a
storage-level upsert so concurrent workers attaching the same contact can
never create a duplicate edge.
"""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from contact_intake.models import Contact, ContactGroupAssociation
from contact_intake.models.base import utcnow


def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return insert


def upsert_membership(
    session: Session,
    *,
    contact_id: str,
    contact_group_id: str,
    created_by: str | None = None,
    field_values: Mapping[str, Any] | None = None,
) -> ContactGroupAssociation:
    """
    Create the membership if missing, otherwise patch its field values.

    ``field_values`` are merged over the stored values; passing ``None``
    leaves existing values untouched. Returns the refreshed association.
    """

    session.flush()
    key = {"contact_group_id": contact_group_id, "contact_id": contact_id}
    existing = session.get(ContactGroupAssociation, key)
    merged = dict(existing.field_values or {}) if existing is not None else {}
    if field_values:
        merged.update(field_values)

    insert = _dialect_insert(session)
    if insert is None:
        if existing is None:
            existing = ContactGroupAssociation(
                contact_group_id=contact_group_id,
                contact_id=contact_id,
                created_by=created_by,
                field_values=merged,
            )
            session.add(existing)
        else:
            existing.field_values = merged
        session.flush()
        _expire_contact_links(session, contact_id)
        return existing

    statement = insert(ContactGroupAssociation).values(
        contact_group_id=contact_group_id,
        contact_id=contact_id,
        created_by=created_by,
        field_values=merged,
        created_at=utcnow(),
    )
    index_elements = [ContactGroupAssociation.contact_group_id, ContactGroupAssociation.contact_id]
    if field_values:
        statement = statement.on_conflict_do_update(
            index_elements=index_elements,
            set_={"field_values": statement.excluded.field_values},
        )
    else:
        statement = statement.on_conflict_do_nothing(index_elements=index_elements)
    session.execute(statement)

    if existing is not None:
        session.expire(existing)
    _expire_contact_links(session, contact_id)
    return session.get(ContactGroupAssociation, key)


def _expire_contact_links(session: Session, contact_id: str) -> None:
    contact = session.identity_map.get(identity_key(Contact, contact_id))
    if contact is not None:
        session.expire(contact, ["group_links"])


def remove_membership(session: Session, *, contact_id: str, contact_group_id: str) -> bool:
    association = session.get(
        ContactGroupAssociation,
        {"contact_group_id": contact_group_id, "contact_id": contact_id},
    )
    if association is None:
        return False
    session.delete(association)
    session.flush()
    _expire_contact_links(session, contact_id)
    return True

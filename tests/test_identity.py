from datetime import datetime, timedelta, timezone

import pytest

from conftest import OTHER_TENANT_ID, TENANT_ID
from contact_intake.importer.pipeline.identity import normalize_email, resolve, resolve_identity
from contact_intake.importer.pipeline.memberships import remove_membership, upsert_membership
from contact_intake.importer.pipeline.phone import variations
from contact_intake.models import Contact, ContactGroupAssociation, db


def add_contact(**kwargs):
    kwargs.setdefault("tenant_id", TENANT_ID)
    contact = Contact(**kwargs)
    db.session.add(contact)
    db.session.commit()
    return contact


def test_normalize_email():
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


def test_resolve_requires_an_identifier():
    with pytest.raises(ValueError):
        resolve_identity(db.session, TENANT_ID, email=" ", phone_variations=[])


def test_resolve_by_email_is_case_insensitive():
    contact = add_contact(email="jane@example.com")

    match = resolve_identity(db.session, TENANT_ID, email="JANE@example.com")

    assert match.contact.id == contact.id
    assert match.matched_on == "email"


def test_resolve_by_any_phone_spelling():
    contact = add_contact(phone="09876543210")

    match = resolve_identity(db.session, TENANT_ID, phone_variations=variations("+919876543210"))

    assert match.is_match
    assert match.contact.id == contact.id
    assert match.matched_on == "phone"


def test_resolve_reports_both_identifiers():
    add_contact(phone="+919876543210", email="jane@example.com")

    match = resolve_identity(
        db.session,
        TENANT_ID,
        email="jane@example.com",
        phone_variations=variations("9876543210"),
    )

    assert match.matched_on == "both"


def test_resolve_is_tenant_scoped():
    add_contact(tenant_id=OTHER_TENANT_ID, email="jane@example.com")

    match = resolve_identity(db.session, TENANT_ID, email="jane@example.com")

    assert not match.is_match
    assert match.matched_on == "none"


def test_resolve_prefers_earliest_created_contact():
    now = datetime.now(timezone.utc)
    older = add_contact(email="jane@example.com", created_at=now - timedelta(days=1))
    add_contact(phone="+919876543210", created_at=now)

    contact = resolve(db.session, TENANT_ID, email="jane@example.com", phone_variations=["+919876543210"])

    assert contact.id == older.id


def test_resolve_can_exclude_a_contact():
    contact = add_contact(email="jane@example.com")

    match = resolve_identity(db.session, TENANT_ID, email="jane@example.com", exclude_contact_id=contact.id)

    assert not match.is_match


def test_upsert_membership_never_duplicates(contact_group):
    contact = add_contact(email="jane@example.com")

    upsert_membership(db.session, contact_id=contact.id, contact_group_id=contact_group.id, field_values={"a": 1})
    upsert_membership(db.session, contact_id=contact.id, contact_group_id=contact_group.id, field_values={"b": 2})
    association = upsert_membership(db.session, contact_id=contact.id, contact_group_id=contact_group.id)
    db.session.commit()

    assert db.session.query(ContactGroupAssociation).count() == 1
    assert association.field_values == {"a": 1, "b": 2}
    assert [link.contact_group_id for link in contact.group_links] == [contact_group.id]


def test_remove_membership(contact_group):
    contact = add_contact(email="jane@example.com")
    upsert_membership(db.session, contact_id=contact.id, contact_group_id=contact_group.id)
    db.session.commit()

    assert remove_membership(db.session, contact_id=contact.id, contact_group_id=contact_group.id)
    assert not remove_membership(db.session, contact_id=contact.id, contact_group_id=contact_group.id)
    db.session.commit()
    assert db.session.query(ContactGroupAssociation).count() == 0

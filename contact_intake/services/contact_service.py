"""
Contact, group, group-field and field-value operations for the request
surface.

Manual contact writes share the identity rules of the bulk pipeline: phones
are stored in E.164 when they normalize, emails are lower-cased, and a contact
whose email or any phone spelling is already taken in the tenant is a
conflict.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contact_intake.errors import BadRequest, Conflict, NotFound, ValidationFailed
from contact_intake.importer.pipeline.identity import normalize_email, resolve_identity
from contact_intake.importer.pipeline.memberships import remove_membership, upsert_membership
from contact_intake.importer.pipeline.phone import DEFAULT_PHONE_REGION, normalize, phone_token, variations
from contact_intake.importer.pipeline.validation import (
    FieldSchemaError,
    ValidationResult,
    parse_field_definition,
    parse_field_definitions,
    validate,
)
from contact_intake.importer.utils import normalize_payload
from contact_intake.models import (
    Contact,
    ContactGroup,
    ContactGroupAssociation,
    ContactGroupField,
    ContactSourceType,
    db,
)

DEFAULT_PAGE_SIZE = 20
GROUP_NAME_CONFLICT = "A contact group with this name already exists"
_EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_FIELD_KEYS = ("name", "field_type", "is_required", "default_value", "validation_rules")


def _coerce_positive_int(value: Any, *, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _require_mapping(value: Any, label: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise BadRequest(f"{label} must be an object")
    return dict(value)


class ContactService:
    """Service layer used by the contacts blueprint."""

    def __init__(self, session: Session | None = None) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session or db.session

    @property
    def phone_region(self) -> str:
        return current_app.config.get("CONTACTS_DEFAULT_PHONE_REGION") or DEFAULT_PHONE_REGION

    def _page_params(self, page: Any, limit: Any) -> tuple[int, int]:
        max_limit = int(current_app.config.get("CONTACTS_PAGE_SIZE_MAX", 100))
        return (
            _coerce_positive_int(page, fallback=1),
            min(_coerce_positive_int(limit, fallback=DEFAULT_PAGE_SIZE), max_limit),
        )

    def _commit(self, conflict_message: str) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict(conflict_message) from exc

    # --- contacts -----------------------------------------------------------

    def _phone_fields(self, raw_phone: Any) -> tuple[str | None, str | None, tuple[str, ...]]:
        """Return (stored phone, country code, lookup variations) for a raw phone."""

        phone_text = phone_token(raw_phone)
        if not phone_text:
            return None, None, ()
        normalized = normalize(phone_text, self.phone_region)
        lookups = variations(phone_text, self.phone_region)
        if normalized.is_valid:
            return normalized.e164, normalized.country_code, lookups
        return phone_text, None, lookups

    def _clean_email(self, raw_email: Any) -> str | None:
        email = normalize_email(raw_email)
        if email is not None and not _EMAIL_REGEX.match(email):
            raise BadRequest("email must be a valid email address")
        return email

    def get_contact(self, contact_id: str, tenant_id: str) -> Contact:
        contact = self.session.get(Contact, contact_id)
        if contact is None or contact.tenant_id != tenant_id:
            raise NotFound("Contact not found")
        return contact

    def create_contact(self, tenant_id: str, user_id: str | None, data: Mapping[str, Any]) -> Contact:
        raw_phone = data.get("phone")
        email = self._clean_email(data.get("email"))
        phone, country_code, lookups = self._phone_fields(raw_phone)
        if not phone and not email:
            raise BadRequest("Either phone or email is required")

        match = resolve_identity(self.session, tenant_id, email=email, phone_variations=lookups)
        if match.is_match:
            raise Conflict("Contact with the same email or phone number already exists")

        group_id = _clean_text(data.get("contact_group_id"))
        if group_id:
            self.get_group(group_id, tenant_id)

        metadata = normalize_payload(_require_mapping(data.get("metadata"), "metadata"))
        if phone:
            metadata["original_phone"] = phone_token(raw_phone)

        contact = Contact(
            tenant_id=tenant_id,
            phone=phone,
            country_code=country_code,
            email=email,
            first_name=_clean_text(data.get("first_name")) or "",
            last_name=_clean_text(data.get("last_name")) or "",
            source_type=ContactSourceType.MANUAL,
            channel_identifiers={},
            preferences=normalize_payload(_require_mapping(data.get("preferences"), "preferences")),
            metadata_json=metadata,
        )
        self.session.add(contact)
        self.session.flush()
        if group_id:
            upsert_membership(self.session, contact_id=contact.id, contact_group_id=group_id, created_by=user_id)
        self._commit("Contact with the same email or phone number already exists")

        current_app.logger.info(
            "Contact created",
            extra={"contact_id": contact.id, "tenant_id": tenant_id, "contact_group_id": group_id},
        )
        return contact

    def update_contact(self, contact_id: str, tenant_id: str, data: Mapping[str, Any]) -> Contact:
        contact = self.get_contact(contact_id, tenant_id)

        email = self._clean_email(data.get("email")) if "email" in data else None
        phone = country_code = None
        lookups: tuple[str, ...] = ()
        if _clean_text(data.get("phone")):
            phone, country_code, lookups = self._phone_fields(data.get("phone"))

        if email or lookups:
            match = resolve_identity(
                self.session,
                tenant_id,
                email=email,
                phone_variations=lookups,
                exclude_contact_id=contact.id,
            )
            if match.is_match:
                raise Conflict("Another contact with the same email or phone number already exists")

        if "first_name" in data:
            contact.first_name = _clean_text(data.get("first_name")) or ""
        if "last_name" in data:
            contact.last_name = _clean_text(data.get("last_name")) or ""
        if email:
            contact.email = email

        metadata = dict(contact.metadata_json or {})
        if "metadata" in data:
            metadata.update(normalize_payload(_require_mapping(data.get("metadata"), "metadata")))
        if phone:
            contact.phone = phone
            contact.country_code = country_code
            metadata["original_phone"] = phone_token(data.get("phone"))
        contact.metadata_json = metadata

        group_id = _clean_text(data.get("contact_group_id"))
        if group_id:
            self.get_group(group_id, tenant_id)
            upsert_membership(self.session, contact_id=contact.id, contact_group_id=group_id)

        self._commit("Another contact with the same email or phone number already exists")
        return contact

    def list_contacts(
        self,
        tenant_id: str,
        *,
        page: Any = 1,
        limit: Any = DEFAULT_PAGE_SIZE,
        search: str | None = None,
        group_id: str | None = None,
    ) -> dict[str, Any]:
        resolved_page, resolved_limit = self._page_params(page, limit)
        query = self.session.query(Contact).filter(Contact.tenant_id == tenant_id)

        term = _clean_text(search)
        if term:
            pattern = f"%{term}%"
            query = query.filter(
                or_(
                    Contact.first_name.ilike(pattern),
                    Contact.last_name.ilike(pattern),
                    Contact.email.ilike(pattern),
                    Contact.phone.ilike(pattern),
                )
            )
        if group_id:
            query = query.join(ContactGroupAssociation, ContactGroupAssociation.contact_id == Contact.id).filter(
                ContactGroupAssociation.contact_group_id == group_id
            )

        total = query.count()
        contacts = (
            query.order_by(Contact.created_at.desc(), Contact.id.desc())
            .offset((resolved_page - 1) * resolved_limit)
            .limit(resolved_limit)
            .all()
        )
        return {
            "data": [contact.to_dict() for contact in contacts],
            "total": total,
            "page": resolved_page,
            "limit": resolved_limit,
        }

    def update_channel_identifiers(self, contact_id: str, tenant_id: str, identifiers: Any) -> Contact:
        contact = self.get_contact(contact_id, tenant_id)
        merged = dict(contact.channel_identifiers or {})
        merged.update(normalize_payload(_require_mapping(identifiers, "channel_identifiers")))
        contact.channel_identifiers = merged
        self.session.commit()
        return contact

    def update_preferences(self, contact_id: str, tenant_id: str, preferences: Any) -> Contact:
        contact = self.get_contact(contact_id, tenant_id)
        merged = dict(contact.preferences or {})
        merged.update(normalize_payload(_require_mapping(preferences, "preferences")))
        contact.preferences = merged
        self.session.commit()
        return contact

    # --- groups -------------------------------------------------------------

    def get_group(self, group_id: str, tenant_id: str) -> ContactGroup:
        group = self.session.get(ContactGroup, group_id)
        if group is None or group.tenant_id != tenant_id:
            raise NotFound("Contact group not found")
        return group

    def create_group(
        self,
        tenant_id: str,
        user_id: str | None,
        *,
        name: Any,
        description: Any = None,
        commit: bool = True,
    ) -> ContactGroup:
        """
        Create a tenant group; names are unique per tenant.

        With ``commit=False`` the group is flushed inside a savepoint and left
        in the caller's open transaction.
        """
        group_name = _clean_text(name)
        if not group_name:
            raise BadRequest("name is required")
        group = ContactGroup(
            tenant_id=tenant_id,
            name=group_name,
            description=_clean_text(description),
            created_by=user_id,
        )
        if commit:
            self.session.add(group)
            self._commit(GROUP_NAME_CONFLICT)
        else:
            try:
                with self.session.begin_nested():
                    self.session.add(group)
            except IntegrityError as exc:
                raise Conflict(GROUP_NAME_CONFLICT) from exc
        current_app.logger.info("Contact group created", extra={"contact_group_id": group.id, "tenant_id": tenant_id})
        return group

    def group_contact_counts(self, group_ids: list[str]) -> dict[str, int]:
        if not group_ids:
            return {}
        rows = (
            self.session.query(ContactGroupAssociation.contact_group_id, func.count(ContactGroupAssociation.contact_id))
            .filter(ContactGroupAssociation.contact_group_id.in_(group_ids))
            .group_by(ContactGroupAssociation.contact_group_id)
            .all()
        )
        return {group_id: count for group_id, count in rows}

    def list_groups(
        self,
        tenant_id: str,
        *,
        page: Any = 1,
        limit: Any = DEFAULT_PAGE_SIZE,
        search: str | None = None,
    ) -> dict[str, Any]:
        resolved_page, resolved_limit = self._page_params(page, limit)
        query = self.session.query(ContactGroup).filter(ContactGroup.tenant_id == tenant_id)
        term = _clean_text(search)
        if term:
            query = query.filter(ContactGroup.name.ilike(f"%{term}%"))

        total = query.count()
        groups = (
            query.order_by(ContactGroup.created_at.desc(), ContactGroup.id.desc())
            .offset((resolved_page - 1) * resolved_limit)
            .limit(resolved_limit)
            .all()
        )
        counts = self.group_contact_counts([group.id for group in groups])
        return {
            "data": [group.to_dict(contact_count=counts.get(group.id, 0)) for group in groups],
            "total": total,
            "page": resolved_page,
            "limit": resolved_limit,
        }

    def add_contact_to_group(
        self,
        contact_id: str,
        group_id: str,
        tenant_id: str,
        user_id: str | None = None,
    ) -> ContactGroupAssociation:
        contact = self.get_contact(contact_id, tenant_id)
        group = self.get_group(group_id, tenant_id)
        association = upsert_membership(
            self.session,
            contact_id=contact.id,
            contact_group_id=group.id,
            created_by=user_id,
        )
        self.session.commit()
        return association

    def remove_contact_from_group(self, contact_id: str, group_id: str, tenant_id: str) -> bool:
        contact = self.get_contact(contact_id, tenant_id)
        group = self.get_group(group_id, tenant_id)
        removed = remove_membership(self.session, contact_id=contact.id, contact_group_id=group.id)
        self.session.commit()
        return removed

    # --- group fields -------------------------------------------------------

    def _checked_field_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(payload) - set(_FIELD_KEYS))
        if unknown:
            raise BadRequest(f"Unsupported field attribute(s): {', '.join(unknown)}")
        candidate = dict(payload)
        if isinstance(candidate.get("name"), str):
            candidate["name"] = candidate["name"].strip()
        if candidate.get("default_value") is not None:
            candidate["default_value"] = str(candidate["default_value"])
        candidate["validation_rules"] = candidate.get("validation_rules") or {}
        try:
            definition = parse_field_definition(candidate)
        except FieldSchemaError as exc:
            raise BadRequest(str(exc)) from exc
        candidate["field_type"] = definition.field_type
        candidate["is_required"] = definition.is_required
        return candidate

    def get_field(self, field_id: str, group_id: str, tenant_id: str) -> ContactGroupField:
        group = self.get_group(group_id, tenant_id)
        field = self.session.get(ContactGroupField, field_id)
        if field is None or field.contact_group_id != group.id:
            raise NotFound("Contact group field not found")
        return field

    def create_field(
        self,
        group_id: str,
        tenant_id: str,
        user_id: str | None,
        data: Mapping[str, Any],
    ) -> ContactGroupField:
        group = self.get_group(group_id, tenant_id)
        payload = self._checked_field_payload(data)
        field = ContactGroupField(contact_group_id=group.id, created_by=user_id, **payload)
        self.session.add(field)
        self._commit("A field with this name already exists in the group")
        return field

    def list_fields(self, group_id: str, tenant_id: str) -> list[ContactGroupField]:
        group = self.get_group(group_id, tenant_id)
        return list(group.fields)

    def update_field(
        self,
        field_id: str,
        group_id: str,
        tenant_id: str,
        data: Mapping[str, Any],
    ) -> ContactGroupField:
        field = self.get_field(field_id, group_id, tenant_id)
        current = {key: getattr(field, key) for key in _FIELD_KEYS}
        current.update(data)
        payload = self._checked_field_payload(current)
        for key, value in payload.items():
            setattr(field, key, value)
        self._commit("A field with this name already exists in the group")
        return field

    def delete_field(self, field_id: str, group_id: str, tenant_id: str) -> None:
        field = self.get_field(field_id, group_id, tenant_id)
        self.session.delete(field)
        self.session.commit()

    # --- field values -------------------------------------------------------

    def validate_field_values(self, group_id: str, tenant_id: str, values: Any) -> ValidationResult:
        group = self.get_group(group_id, tenant_id)
        try:
            return validate(group.fields, _require_mapping(values, "field_values"))
        except FieldSchemaError as exc:
            raise BadRequest(str(exc)) from exc

    def update_field_values(
        self,
        contact_id: str,
        group_id: str,
        tenant_id: str,
        values: Any,
        *,
        user_id: str | None = None,
    ) -> ContactGroupAssociation:
        contact = self.get_contact(contact_id, tenant_id)
        group = self.get_group(group_id, tenant_id)
        values = _require_mapping(values, "field_values")
        try:
            definitions = parse_field_definitions(group.fields)
        except FieldSchemaError as exc:
            raise BadRequest(str(exc)) from exc

        result = validate(definitions, values)
        if not result.is_valid:
            raise ValidationFailed(
                "Field validation failed",
                errors=[error.to_dict() for error in result.errors],
            )

        known = {definition.name for definition in definitions}
        association = upsert_membership(
            self.session,
            contact_id=contact.id,
            contact_group_id=group.id,
            created_by=user_id,
            field_values=normalize_payload({key: value for key, value in values.items() if key in known}),
        )
        self.session.commit()
        return association

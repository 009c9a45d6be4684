"""
Contacts blueprint: contact, group, group-field and field-value endpoints.

The caller's tenant and user arrive in the ``X-Tenant-Id``/``X-User-Id``
headers set by the upstream gateway.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from contact_intake.errors import BadRequest, ContactIntakeError
from contact_intake.services.contact_service import ContactService

contacts_blueprint = Blueprint("contacts", __name__, url_prefix="/contacts")

TENANT_HEADER = "X-Tenant-Id"
USER_HEADER = "X-User-Id"

_contact_service = ContactService()


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


@contacts_blueprint.errorhandler(ContactIntakeError)
def handle_contact_intake_error(error: ContactIntakeError):
    return jsonify(error.to_dict()), error.status


@contacts_blueprint.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return error
    current_app.logger.exception("Unhandled error in contacts endpoint", extra={"path": request.path})
    return _json_error("Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)


def tenant_id() -> str:
    value = (request.headers.get(TENANT_HEADER) or "").strip()
    if not value:
        raise BadRequest(f"{TENANT_HEADER} header is required")
    return value


def user_id() -> str | None:
    return (request.headers.get(USER_HEADER) or "").strip() or None


def json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequest("Request body must be a JSON object")
    return payload


# --- contacts ---------------------------------------------------------------


@contacts_blueprint.post("/")
def create_contact():
    contact = _contact_service.create_contact(tenant_id(), user_id(), json_body())
    return jsonify(contact.to_dict()), HTTPStatus.CREATED


@contacts_blueprint.get("/")
def list_contacts():
    payload = _contact_service.list_contacts(
        tenant_id(),
        page=request.args.get("page", 1),
        limit=request.args.get("limit"),
        search=request.args.get("search"),
        group_id=request.args.get("group_id"),
    )
    return jsonify(payload)


@contacts_blueprint.get("/<contact_id>")
def get_contact(contact_id: str):
    return jsonify(_contact_service.get_contact(contact_id, tenant_id()).to_dict())


@contacts_blueprint.put("/<contact_id>")
def update_contact(contact_id: str):
    contact = _contact_service.update_contact(contact_id, tenant_id(), json_body())
    return jsonify(contact.to_dict())


@contacts_blueprint.put("/<contact_id>/channel-identifiers")
def update_channel_identifiers(contact_id: str):
    contact = _contact_service.update_channel_identifiers(contact_id, tenant_id(), request.get_json(silent=True))
    return jsonify(contact.to_dict())


@contacts_blueprint.put("/<contact_id>/preferences")
def update_preferences(contact_id: str):
    contact = _contact_service.update_preferences(contact_id, tenant_id(), request.get_json(silent=True))
    return jsonify(contact.to_dict())


# --- groups -----------------------------------------------------------------


@contacts_blueprint.post("/groups")
def create_group():
    body = json_body()
    group = _contact_service.create_group(
        tenant_id(),
        user_id(),
        name=body.get("name"),
        description=body.get("description"),
    )
    return jsonify(group.to_dict(contact_count=0)), HTTPStatus.CREATED


@contacts_blueprint.get("/groups")
def list_groups():
    payload = _contact_service.list_groups(
        tenant_id(),
        page=request.args.get("page", 1),
        limit=request.args.get("limit"),
        search=request.args.get("search"),
    )
    return jsonify(payload)


@contacts_blueprint.post("/<contact_id>/groups/<group_id>")
def add_contact_to_group(contact_id: str, group_id: str):
    association = _contact_service.add_contact_to_group(contact_id, group_id, tenant_id(), user_id())
    return jsonify(association.to_dict()), HTTPStatus.CREATED


@contacts_blueprint.delete("/<contact_id>/groups/<group_id>")
def remove_contact_from_group(contact_id: str, group_id: str):
    removed = _contact_service.remove_contact_from_group(contact_id, group_id, tenant_id())
    return jsonify({"removed": removed})


# --- group fields -----------------------------------------------------------


@contacts_blueprint.post("/groups/<group_id>/fields")
def create_field(group_id: str):
    field = _contact_service.create_field(group_id, tenant_id(), user_id(), json_body())
    return jsonify(field.to_dict()), HTTPStatus.CREATED


@contacts_blueprint.get("/groups/<group_id>/fields")
def list_fields(group_id: str):
    fields = _contact_service.list_fields(group_id, tenant_id())
    return jsonify({"data": [field.to_dict() for field in fields]})


@contacts_blueprint.put("/groups/<group_id>/fields/<field_id>")
def update_field(group_id: str, field_id: str):
    field = _contact_service.update_field(field_id, group_id, tenant_id(), json_body())
    return jsonify(field.to_dict())


@contacts_blueprint.delete("/groups/<group_id>/fields/<field_id>")
def delete_field(group_id: str, field_id: str):
    _contact_service.delete_field(field_id, group_id, tenant_id())
    return "", HTTPStatus.NO_CONTENT


# --- field values -----------------------------------------------------------


@contacts_blueprint.put("/<contact_id>/groups/<group_id>/fields")
def update_field_values(contact_id: str, group_id: str):
    association = _contact_service.update_field_values(
        contact_id,
        group_id,
        tenant_id(),
        request.get_json(silent=True),
        user_id=user_id(),
    )
    return jsonify(association.to_dict())


@contacts_blueprint.post("/groups/<group_id>/validate-fields")
def validate_fields(group_id: str):
    result = _contact_service.validate_field_values(group_id, tenant_id(), request.get_json(silent=True))
    return jsonify(result.to_dict())

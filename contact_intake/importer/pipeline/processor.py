"""
Batch processor for bulk contact uploads.

The worker streams the stored spreadsheet row by row. Each row is normalized,
resolved against existing contacts, validated against the target group's field
schema and upserted inside its own savepoint, so one bad row never aborts the
batch. Counters are checkpointed every few rows and row failures are recorded
on the upload for the downloadable error report.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Literal, Mapping, Sequence

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contact_intake.importer.adapters.spreadsheet import SpreadsheetReader
from contact_intake.importer.metrics import record_upload_finished
from contact_intake.importer.utils import cleanup_upload, normalize_payload
from contact_intake.models import (
    Contact,
    ContactGroup,
    ContactSourceType,
    ContactUpload,
    ContactUploadStatus,
    db,
)
from contact_intake.models.base import utcnow

from .identity import normalize_email, resolve_identity
from .memberships import upsert_membership
from .phone import DEFAULT_PHONE_REGION, coerce_e164, normalize, phone_token, variations
from .validation import FieldDefinition, apply_defaults, parse_field_definitions, validate

CORE_FIELDS = ("phone", "email", "first_name", "last_name")
FIELD_POLICIES = ("reject", "annotate")
DUPLICATE_CONTACT_MESSAGE = "Contact with the same email or phone number already exists"


class RowRejected(Exception):
    """Raised for a single row that cannot be imported; the batch continues."""


class ContactGroupMissing(LookupError):
    """Raised when an upload targets a group that no longer exists."""


@dataclass
class UploadCounters:
    processed: int = 0
    accepted: int = 0
    rejected: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "accepted": self.accepted,
            "rejected": self.rejected,
        }


@dataclass(frozen=True)
class ProcessorSettings:
    """Tunables read from the Flask config (see ``CONTACT_UPLOAD_*`` keys)."""

    progress_interval: int = 10
    max_errors: int = 1000
    field_policy: Literal["reject", "annotate"] = "reject"
    phone_region: str = DEFAULT_PHONE_REGION

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ProcessorSettings":
        policy = str(config.get("CONTACT_UPLOAD_FIELD_POLICY") or "reject").strip().lower()
        if policy not in FIELD_POLICIES:
            raise ValueError(f"Unsupported CONTACT_UPLOAD_FIELD_POLICY '{policy}'.")
        return cls(
            progress_interval=max(int(config.get("CONTACT_UPLOAD_PROGRESS_INTERVAL") or 10), 1),
            max_errors=max(int(config.get("CONTACT_UPLOAD_MAX_ERRORS") or 1000), 0),
            field_policy=policy,
            phone_region=config.get("CONTACTS_DEFAULT_PHONE_REGION") or DEFAULT_PHONE_REGION,
        )


@dataclass(frozen=True)
class UploadSummary:
    """Result returned to the worker for logging and task results."""

    upload_id: str
    outcome: Literal["completed", "failed", "skipped", "missing"]
    status: str | None = None
    total_records: int | None = None
    processed_records: int = 0
    accepted_records: int = 0
    rejected_records: int = 0
    error_count: int = 0

    @classmethod
    def from_upload(cls, upload: ContactUpload, outcome: str) -> "UploadSummary":
        return cls(
            upload_id=upload.id,
            outcome=outcome,
            status=upload.status.value,
            total_records=upload.total_records,
            processed_records=upload.processed_records or 0,
            accepted_records=upload.accepted_records or 0,
            rejected_records=upload.rejected_records or 0,
            error_count=len(upload.errors or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "upload_id": self.upload_id,
            "outcome": self.outcome,
            "status": self.status,
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "accepted_records": self.accepted_records,
            "rejected_records": self.rejected_records,
            "error_count": self.error_count,
        }


@dataclass(frozen=True)
class _RowContext:
    tenant_id: str
    upload_id: str
    uploaded_by: str | None
    contact_group_id: str | None
    definitions: Sequence[FieldDefinition]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _row_message(exc: Exception) -> str:
    if isinstance(exc, IntegrityError):
        return DUPLICATE_CONTACT_MESSAGE
    return str(exc) or exc.__class__.__name__


class UploadProcessor:
    """Consumes one upload job end to end."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        settings: ProcessorSettings | None = None,
        logger=None,
    ) -> None:
        self.session = session or db.session
        self.settings = settings or ProcessorSettings.from_config(current_app.config)
        self.logger = logger or current_app.logger

    def process(self, upload_id: str, file_path: str | Path, contact_group_id: str | None = None) -> UploadSummary:
        started = time.monotonic()
        upload = self.session.get(ContactUpload, upload_id)
        if upload is None:
            self.logger.warning(
                "Contact upload not found; dropping message",
                extra={"upload_id": upload_id, "file_path": str(file_path)},
            )
            return UploadSummary(upload_id=upload_id, outcome="missing")
        if upload.status.is_terminal:
            self.logger.info(
                "Contact upload already finished; skipping redelivered message",
                extra={"upload_id": upload_id, "upload_status": upload.status.value},
            )
            return UploadSummary.from_upload(upload, "skipped")

        tenant_id = upload.tenant_id
        group_id = contact_group_id or upload.contact_group_id
        context_base = (tenant_id, upload.id, upload.uploaded_by, group_id)

        upload.status = ContactUploadStatus.PROCESSING
        upload.total_records = None
        upload.processed_records = 0
        upload.accepted_records = 0
        upload.rejected_records = 0
        upload.errors = None
        upload.completed_at = None
        self.session.commit()

        path = Path(file_path)
        counters = UploadCounters()
        committed = UploadCounters()
        errors: list[dict[str, Any]] = []

        try:
            definitions = self._load_group_schema(tenant_id, group_id)
            context = _RowContext(*context_base, definitions=definitions)

            reader = SpreadsheetReader(path)
            total = reader.count_rows()
            self.session.execute(
                update(ContactUpload).where(ContactUpload.id == upload_id).values(total_records=total)
            )
            self.session.commit()
            self.logger.info(
                "Contact upload processing started",
                extra={"upload_id": upload_id, "tenant_id": tenant_id, "total_records": total},
            )

            for row in reader.iter_rows():
                counters.processed += 1
                try:
                    with self.session.begin_nested():
                        self._process_row(row.values, context)
                    counters.accepted += 1
                except Exception as exc:
                    counters.rejected += 1
                    if len(errors) < self.settings.max_errors:
                        errors.append(
                            {
                                "row": row.row_number,
                                "message": _row_message(exc),
                                "data": normalize_payload(row.values),
                            }
                        )
                    self.logger.debug(
                        "Contact upload row rejected",
                        extra={"upload_id": upload_id, "row": row.row_number, "error": str(exc)},
                    )

                if counters.processed % self.settings.progress_interval == 0:
                    self._checkpoint(upload_id, counters)
                    committed = replace(counters)

            finished = self.session.get(ContactUpload, upload_id)
            finished.status = ContactUploadStatus.COMPLETED
            finished.processed_records = counters.processed
            finished.accepted_records = counters.accepted
            finished.rejected_records = counters.rejected
            finished.errors = errors or None
            finished.completed_at = utcnow()
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            self._mark_failed(upload_id, committed, exc)
            record_upload_finished(
                status="failed",
                duration_seconds=time.monotonic() - started,
                accepted=committed.accepted,
                rejected=committed.rejected,
            )
            self.logger.exception(
                "Contact upload failed",
                extra={"upload_id": upload_id, "tenant_id": tenant_id, "upload_error": str(exc)},
            )
            raise

        cleanup_upload(path)
        record_upload_finished(
            status="completed",
            duration_seconds=time.monotonic() - started,
            accepted=counters.accepted,
            rejected=counters.rejected,
        )
        self.logger.info(
            "Contact upload completed",
            extra={
                "upload_id": upload_id,
                "tenant_id": tenant_id,
                "upload_processed": counters.processed,
                "upload_accepted": counters.accepted,
                "upload_rejected": counters.rejected,
            },
        )
        return UploadSummary.from_upload(finished, "completed")

    def _load_group_schema(self, tenant_id: str, group_id: str | None) -> list[FieldDefinition]:
        if not group_id:
            return []
        group = self.session.get(ContactGroup, group_id)
        if group is None or group.tenant_id != tenant_id:
            raise ContactGroupMissing(f"Contact group {group_id} not found")
        return parse_field_definitions(group.fields)

    def _checkpoint(self, upload_id: str, counters: UploadCounters) -> None:
        self.session.execute(
            update(ContactUpload)
            .where(ContactUpload.id == upload_id)
            .values(
                processed_records=counters.processed,
                accepted_records=counters.accepted,
                rejected_records=counters.rejected,
            )
        )
        self.session.commit()

    def _mark_failed(self, upload_id: str, committed: UploadCounters, exc: Exception) -> None:
        failed = self.session.get(ContactUpload, upload_id)
        if failed is None:
            return
        failed.status = ContactUploadStatus.FAILED
        failed.processed_records = committed.processed
        failed.accepted_records = committed.accepted
        failed.rejected_records = committed.rejected
        failed.errors = [{"row": None, "message": str(exc) or exc.__class__.__name__, "data": None}]
        failed.completed_at = utcnow()
        self.session.commit()

    def _collect_field_values(self, values: Mapping[str, Any], context: _RowContext) -> dict[str, Any] | None:
        if not context.contact_group_id or not context.definitions:
            return None
        provided = {
            definition.name: values[definition.name]
            for definition in context.definitions
            if definition.name in values
        }
        provided = apply_defaults(context.definitions, provided)
        result = validate(context.definitions, provided)
        if not result.is_valid:
            if self.settings.field_policy == "reject":
                raise RowRejected("; ".join(result.messages))
            provided["_violations"] = [error.to_dict() for error in result.errors]
        return normalize_payload(provided)

    def _process_row(self, values: Mapping[str, Any], context: _RowContext) -> Contact:
        phone_text = phone_token(values.get("phone")) or None
        email = normalize_email(values.get("email"))
        if not phone_text and not email:
            raise RowRejected("Either phone or email is required")

        phone = country_code = None
        phone_variants: tuple[str, ...] = ()
        if phone_text:
            normalized = normalize(phone_text, self.settings.phone_region)
            if normalized.is_valid:
                phone, country_code = normalized.e164, normalized.country_code
            else:
                phone = coerce_e164(phone_text)
                if phone is None:
                    raise RowRejected("Invalid phone number format (must be E.164 format)")
            phone_variants = variations(phone_text, self.settings.phone_region)
            if phone not in phone_variants:
                phone_variants = (phone, *phone_variants)

        field_values = self._collect_field_values(values, context)

        match = resolve_identity(self.session, context.tenant_id, email=email, phone_variations=phone_variants)
        first_name = _text(values.get("first_name"))
        last_name = _text(values.get("last_name"))

        contact = match.contact
        if contact is not None:
            if first_name:
                contact.first_name = first_name
            if last_name:
                contact.last_name = last_name
            if phone:
                contact.phone = phone
                contact.country_code = country_code
            if email:
                contact.email = email
        else:
            contact = Contact(
                tenant_id=context.tenant_id,
                phone=phone,
                country_code=country_code,
                email=email,
                first_name=first_name or "",
                last_name=last_name or "",
                source_type=ContactSourceType.BULK_UPLOAD,
                source_id=context.upload_id,
                channel_identifiers={},
                preferences={},
                metadata_json={},
            )
            self.session.add(contact)

        metadata = dict(contact.metadata_json or {})
        metadata.update(normalize_payload({k: v for k, v in values.items() if k not in CORE_FIELDS}))
        if phone_text:
            metadata["original_phone"] = phone_text
        contact.metadata_json = metadata
        self.session.flush()

        if context.contact_group_id:
            upsert_membership(
                self.session,
                contact_id=contact.id,
                contact_group_id=context.contact_group_id,
                created_by=context.uploaded_by,
                field_values=field_values,
            )
        return contact


def process_upload(
    upload_id: str,
    file_path: str | Path,
    contact_group_id: str | None = None,
    *,
    session: Session | None = None,
    settings: ProcessorSettings | None = None,
) -> UploadSummary:
    """Process ``upload_id`` with settings from the active Flask app."""

    return UploadProcessor(session, settings=settings).process(upload_id, file_path, contact_group_id)

"""
Upload orchestration: accept a spreadsheet, record the job, hand it to the
worker queue, and answer status and listing queries for the request surface.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage

from contact_intake.errors import BadRequest, NotFound, PayloadTooLarge
from contact_intake.importer.metrics import record_upload_submitted
from contact_intake.importer.utils import (
    MEGABYTE,
    allowed_file,
    cleanup_upload,
    file_extension,
    measure_upload,
    persist_upload,
)
from contact_intake.models import ContactGroup, ContactUpload, ContactUploadStatus, db
from contact_intake.models.base import utcnow
from contact_intake.services.contact_service import ContactService

PROCESS_UPLOAD_TASK = "contacts.process_upload"
UPLOAD_QUEUE_NAME = "contact_uploads"
DEFAULT_MESSAGE_TTL_SECONDS = 24 * 60 * 60
DEFAULT_PAGE_SIZE = 20

Publisher = Callable[[Mapping[str, Any]], Any]


def status_url_for(upload_id: str) -> str:
    return f"/contacts/bulk-upload/{upload_id}/status"


def _coerce_positive_int(value: Any, *, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def publish_to_queue(message: Mapping[str, Any]) -> str | None:
    """Send the processing message to the upload queue via Celery."""

    from contact_intake.importer.celery_app import get_celery_app

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        raise RuntimeError("Contact upload worker is not configured.")
    ttl = int(current_app.config.get("CONTACT_UPLOAD_MESSAGE_TTL_SECONDS") or DEFAULT_MESSAGE_TTL_SECONDS)
    async_result = celery_app.send_task(
        PROCESS_UPLOAD_TASK,
        kwargs={"message": dict(message)},
        queue=UPLOAD_QUEUE_NAME,
        expires=ttl,
    )
    return async_result.id


class ContactUploadService:
    """Upload job lifecycle on the request side."""

    def __init__(self, session: Session | None = None, *, publisher: Publisher | None = None) -> None:
        self._session = session
        self.publisher = publisher or publish_to_queue

    @property
    def session(self) -> Session:
        return self._session or db.session

    def _max_upload_bytes(self) -> tuple[int, int]:
        limit_mb = current_app.config.get("CONTACT_UPLOAD_MAX_MB", 10)
        try:
            limit_mb = int(limit_mb)
        except (TypeError, ValueError):
            limit_mb = 10
        return limit_mb, limit_mb * MEGABYTE

    def _validate_file(self, file_storage: FileStorage | None) -> int:
        if file_storage is None or not file_storage.filename:
            raise BadRequest("No file uploaded")
        if not allowed_file(file_storage.filename):
            raise BadRequest("Unsupported file format. Please upload Excel or CSV file")
        limit_mb, max_bytes = self._max_upload_bytes()
        size = measure_upload(file_storage)
        if size > max_bytes:
            raise PayloadTooLarge(f"File size exceeds the {limit_mb}MB limit")
        return size

    def _resolve_group(
        self,
        tenant_id: str,
        user_id: str,
        *,
        contact_group_id: str | None,
        create_new_group: bool,
        new_group_name: str | None,
    ) -> str | None:
        if create_new_group:
            name = (new_group_name or "").strip()
            if not name:
                raise BadRequest("new_group_name is required when create_new_group is set")
            group = ContactService(self._session).create_group(tenant_id, user_id, name=name, commit=False)
            return group.id

        if not contact_group_id:
            return None
        group = self.session.get(ContactGroup, contact_group_id)
        if group is None or group.tenant_id != tenant_id:
            raise NotFound("Contact group not found")
        return group.id

    def _find_submission(self, tenant_id: str, submission_id: str) -> ContactUpload | None:
        return (
            self.session.query(ContactUpload)
            .filter(ContactUpload.tenant_id == tenant_id, ContactUpload.submission_id == submission_id)
            .one_or_none()
        )

    def submit(
        self,
        tenant_id: str,
        user_id: str,
        file_storage: FileStorage | None,
        *,
        contact_group_id: str | None = None,
        create_new_group: bool = False,
        new_group_name: str | None = None,
        submission_id: str | None = None,
    ) -> ContactUpload:
        """
        Validate and store an upload, create its job and enqueue processing.

        A repeated ``submission_id`` for the same tenant returns the existing
        job without storing or enqueuing anything.
        """

        submission_id = (submission_id or "").strip() or None
        if submission_id:
            existing = self._find_submission(tenant_id, submission_id)
            if existing is not None:
                current_app.logger.info(
                    "Duplicate contact upload submission ignored",
                    extra={"upload_id": existing.id, "tenant_id": tenant_id, "submission_id": submission_id},
                )
                return existing

        file_size = self._validate_file(file_storage)
        group_id = self._resolve_group(
            tenant_id,
            user_id,
            contact_group_id=contact_group_id,
            create_new_group=create_new_group,
            new_group_name=new_group_name,
        )

        # A group created above is still uncommitted and lands with the job.
        try:
            stored_path = persist_upload(file_storage, current_app)
        except Exception:
            self.session.rollback()
            raise
        upload = ContactUpload(
            tenant_id=tenant_id,
            uploaded_by=user_id,
            contact_group_id=group_id,
            submission_id=submission_id,
            filename=stored_path.name,
            original_filename=file_storage.filename,
            file_size=file_size,
            status=ContactUploadStatus.PENDING,
        )
        self.session.add(upload)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            cleanup_upload(stored_path)
            existing = self._find_submission(tenant_id, submission_id) if submission_id else None
            if existing is None:
                raise
            return existing

        upload_id = upload.id
        message = {
            "uploadId": upload_id,
            "tenantId": tenant_id,
            "filePath": str(stored_path),
            "contactGroupId": group_id,
        }
        try:
            task_id = self.publisher(message)
        except Exception as exc:
            current_app.logger.exception(
                "Failed to enqueue contact upload",
                extra={"upload_id": upload_id, "tenant_id": tenant_id},
            )
            self.session.rollback()
            failed = self.session.get(ContactUpload, upload_id)
            failed.status = ContactUploadStatus.FAILED
            failed.errors = [{"row": None, "message": f"Failed to enqueue upload: {exc}", "data": None}]
            failed.completed_at = utcnow()
            self.session.commit()
            cleanup_upload(stored_path)
            raise

        record_upload_submitted(file_extension(file_storage.filename))
        current_app.logger.info(
            "Contact upload enqueued",
            extra={
                "upload_id": upload.id,
                "tenant_id": tenant_id,
                "task_id": task_id,
                "contact_group_id": group_id,
                "file_size": file_size,
            },
        )
        return upload

    def get_upload(self, upload_id: str, tenant_id: str) -> ContactUpload:
        upload = self.session.get(ContactUpload, upload_id)
        if upload is None or upload.tenant_id != tenant_id:
            raise NotFound("Upload record not found")
        return upload

    def status(self, upload_id: str, tenant_id: str) -> dict[str, Any]:
        upload = self.get_upload(upload_id, tenant_id)
        return {
            "upload_id": upload.id,
            "status": upload.status.value,
            "total_records": upload.total_records or 0,
            "processed_records": upload.processed_records or 0,
            "accepted_records": upload.accepted_records or 0,
            "rejected_records": upload.rejected_records or 0,
            "completion_percentage": upload.completion_percentage,
            "errors": list(upload.errors or []),
            "contact_group_id": upload.contact_group_id,
            "created_at": upload.created_at.isoformat() if upload.created_at else None,
            "completed_at": upload.completed_at.isoformat() if upload.completed_at else None,
        }

    def list_uploads(self, tenant_id: str, *, page: Any = 1, limit: Any = DEFAULT_PAGE_SIZE) -> dict[str, Any]:
        resolved_page = _coerce_positive_int(page, fallback=1)
        max_limit = int(current_app.config.get("CONTACTS_PAGE_SIZE_MAX", 100))
        resolved_limit = min(_coerce_positive_int(limit, fallback=DEFAULT_PAGE_SIZE), max_limit)

        query = self.session.query(ContactUpload).filter(ContactUpload.tenant_id == tenant_id)
        total = query.count()
        uploads = (
            query.order_by(ContactUpload.created_at.desc(), ContactUpload.id.desc())
            .offset((resolved_page - 1) * resolved_limit)
            .limit(resolved_limit)
            .all()
        )
        return {
            "data": [upload.to_dict() for upload in uploads],
            "total": total,
            "page": resolved_page,
            "limit": resolved_limit,
        }

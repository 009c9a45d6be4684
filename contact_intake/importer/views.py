"""
Bulk upload and worker health endpoints, mounted on the contacts blueprint.
"""

from __future__ import annotations

from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Response, current_app, jsonify, request

from contact_intake.routes.contacts import contacts_blueprint, tenant_id, user_id

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .pipeline.error_report import build_error_report
from .pipeline.uploads import ContactUploadService, status_url_for
from .tasks import HEALTHCHECK_TASK

_TRUE_VALUES = {"1", "true", "yes", "on"}

_upload_service = ContactUploadService()


def _form_flag(name: str) -> bool:
    return (request.form.get(name) or "").strip().lower() in _TRUE_VALUES


@contacts_blueprint.post("/bulk-upload")
def submit_bulk_upload():
    upload = _upload_service.submit(
        tenant_id(),
        user_id(),
        request.files.get("file"),
        contact_group_id=request.form.get("contact_group_id"),
        create_new_group=_form_flag("create_new_group"),
        new_group_name=request.form.get("new_group_name"),
        submission_id=request.form.get("submission_id"),
    )
    payload = upload.to_dict()
    payload["status_url"] = status_url_for(upload.id)
    return jsonify(payload), HTTPStatus.ACCEPTED


@contacts_blueprint.get("/bulk-upload")
def list_bulk_uploads():
    payload = _upload_service.list_uploads(
        tenant_id(),
        page=request.args.get("page", 1),
        limit=request.args.get("limit"),
    )
    return jsonify(payload)


@contacts_blueprint.get("/bulk-upload/<upload_id>/status")
def bulk_upload_status(upload_id: str):
    return jsonify(_upload_service.status(upload_id, tenant_id()))


@contacts_blueprint.get("/bulk-upload/<upload_id>/errors")
def bulk_upload_errors(upload_id: str):
    report = build_error_report(upload_id, tenant_id())
    return Response(
        report.content,
        mimetype=report.mimetype,
        headers={"Content-Disposition": f"attachment; filename={report.filename}"},
    )


@contacts_blueprint.get("/health")
def contacts_healthcheck():
    """
    Lightweight health endpoint proving the contacts blueprint mounted correctly.
    """
    state = current_app.extensions.get("contact_uploads", {})
    return jsonify({"status": "ok", "worker_enabled": state.get("worker_enabled", False)}), 200


@contacts_blueprint.get("/worker_health")
def contacts_worker_health():
    """
    Validate upload worker availability via the heartbeat task.
    """
    state = current_app.extensions.get("contact_uploads", {})
    worker_enabled = state.get("worker_enabled", False)
    timeout_seconds = float(request.args.get("timeout", 5))

    payload = {
        "worker_enabled": worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }

    if not worker_enabled:
        payload["status"] = "disabled"
        payload["message"] = "Worker flag disabled; start the worker or set WORKER_ENABLED=true."
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), 500

    task = celery_app.tasks.get(HEALTHCHECK_TASK)
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504
    payload["status"] = "ok"
    return jsonify(payload), 200

"""
Celery tasks for the contact upload worker.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from celery import shared_task
from flask import current_app

from contact_intake.importer.pipeline.processor import process_upload

HEALTHCHECK_TASK = "contacts.healthcheck"
REQUIRED_MESSAGE_KEYS = ("uploadId", "filePath")


@shared_task(name=HEALTHCHECK_TASK, bind=True)
def contacts_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="contacts.process_upload", bind=True)
def process_contact_upload(self, *, message: Mapping[str, Any]) -> dict[str, Any]:
    """
    Consume one ``{uploadId, tenantId, filePath, contactGroupId}`` message.

    A message that is missing keys, or whose upload no longer exists, is
    logged and dropped. Fatal processing errors propagate so Celery records
    the failure; the upload itself has already been marked failed.
    """

    missing = [key for key in REQUIRED_MESSAGE_KEYS if not message.get(key)]
    if missing:
        current_app.logger.error(
            "Malformed contact upload message dropped",
            extra={"missing_keys": missing, "task_id": self.request.id},
        )
        return {"upload_id": message.get("uploadId"), "outcome": "malformed"}

    summary = process_upload(
        message["uploadId"],
        message["filePath"],
        message.get("contactGroupId"),
    )
    return summary.to_dict()

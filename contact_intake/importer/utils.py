"""
Upload helpers: storage location, extension and size checks, persistence,
cleanup and JSON coercion of spreadsheet values.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable
from uuid import uuid4

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from contact_intake.importer.adapters.spreadsheet import SUPPORTED_EXTENSIONS

DEFAULT_UPLOAD_SUBDIR = "contact_uploads"
MEGABYTE = 1024 * 1024


def _normalize_upload_dir(configured_path: str | None, instance_path: str) -> Path:
    if not configured_path:
        return Path(instance_path) / DEFAULT_UPLOAD_SUBDIR

    candidate = Path(configured_path)
    if candidate.is_absolute():
        return candidate

    return Path(instance_path) / candidate


def resolve_upload_directory(app) -> Path:
    """
    Determine and create (if necessary) the contact upload directory.
    """

    upload_dir = _normalize_upload_dir(app.config.get("CONTACT_UPLOAD_DIR"), app.instance_path)
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def file_extension(filename: str | None) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def allowed_file(filename: str | None, allowed_extensions: Iterable[str] = SUPPORTED_EXTENSIONS) -> bool:
    """
    Validate the uploaded filename extension against the allowed set.
    """

    extension = file_extension(filename)
    return bool(extension) and extension in {ext.lower() for ext in allowed_extensions}


def measure_upload(file_storage: FileStorage) -> int:
    """
    Return the size of an uploaded file in bytes without consuming it.
    """

    if file_storage.content_length:
        return int(file_storage.content_length)
    stream = file_storage.stream
    position = stream.tell()
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(position)
    return size


def persist_upload(file_storage: FileStorage, app) -> Path:
    """
    Persist the uploaded file to disk and return the fully-qualified path.

    Files are stored under ``resolve_upload_directory(app)`` using a UUID-based
    filename to avoid collisions. The original extension is preserved so the
    worker can pick the right reader.
    """

    upload_dir = resolve_upload_directory(app)
    original_name = secure_filename(file_storage.filename or "")
    extension = Path(original_name).suffix.lower() if original_name else ""
    if not extension:
        extension = ".csv"

    target_path = upload_dir / f"{uuid4().hex}{extension}"
    file_storage.stream.seek(0)
    file_storage.save(target_path)
    current_app.logger.debug("Contact upload persisted to %s", target_path)
    return target_path


def cleanup_upload(path: Path | str) -> None:
    """
    Remove a stored upload, logging but ignoring filesystem errors.
    """

    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        current_app.logger.warning("Failed to remove contact upload %s: %s", path, exc)


def ensure_json_serializable(value: Any) -> Any:
    """
    Best-effort conversion of spreadsheet values to JSON-serializable forms.
    """

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Mapping):
        return {str(key): ensure_json_serializable(inner) for key, inner in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [ensure_json_serializable(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return str(value)


def normalize_payload(payload: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Return a shallow copy of ``payload`` with JSON-serializable values.
    """

    if not payload:
        return {}
    return {str(key): ensure_json_serializable(value) for key, value in payload.items()}

"""
CSV rendering of the row errors recorded on a finished upload.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass

from sqlalchemy.orm import Session

from contact_intake.errors import BadRequest, NotFound
from contact_intake.models import ContactUpload, db

REPORT_HEADER = ("Row", "Error Message", "Data")


@dataclass(frozen=True)
class ErrorReport:
    content: str
    filename: str
    mimetype: str = "text/csv"


def render_error_csv(errors: list[dict]) -> str:
    """
    Render ``{row, message, data}`` entries as CSV.

    ``Data`` holds the JSON encoding of the raw row; quoting and quote
    doubling are left to the csv writer.
    """

    buffer = io.StringIO()
    buffer.write(",".join(REPORT_HEADER) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    for entry in errors:
        row = entry.get("row")
        writer.writerow(
            (
                "" if row is None else row,
                entry.get("message") or "",
                json.dumps(entry.get("data") or {}, default=str),
            )
        )
    return buffer.getvalue()


def build_error_report(upload_id: str, tenant_id: str, *, session: Session | None = None) -> ErrorReport:
    session = session or db.session
    upload = session.get(ContactUpload, upload_id)
    if upload is None or upload.tenant_id != tenant_id:
        raise NotFound("Upload record not found")
    if not upload.errors:
        raise BadRequest("No errors found for this upload")
    return ErrorReport(
        content=render_error_csv(list(upload.errors)),
        filename=f"upload_errors_{upload.id}.csv",
    )

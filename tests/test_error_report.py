import pytest

from conftest import OTHER_TENANT_ID, TENANT_ID
from contact_intake.errors import BadRequest, NotFound
from contact_intake.importer.pipeline.error_report import build_error_report, render_error_csv
from contact_intake.importer.pipeline.processor import process_upload
from contact_intake.models import ContactUploadStatus, db


def test_render_error_csv_quotes_text_and_json_data():
    content = render_error_csv(
        [
            {"row": 3, "message": "Either phone or email is required", "data": {"first_name": 'Ann "A"'}},
            {"row": None, "message": "boom", "data": None},
        ]
    )

    assert content.splitlines() == [
        "Row,Error Message,Data",
        '3,"Either phone or email is required","{""first_name"": ""Ann \\""A\\""""}"',
        '"","boom","{}"',
    ]


def test_report_for_upload_with_row_errors(write_csv, make_upload):
    path = write_csv(["email", "first_name"], [["a@example.com", "A"], ["", "Nobody"]])
    upload = make_upload(path)
    process_upload(upload.id, path)

    report = build_error_report(upload.id, TENANT_ID)

    assert report.filename == f"upload_errors_{upload.id}.csv"
    assert report.mimetype == "text/csv"
    assert report.content.splitlines()[1] == '3,"Either phone or email is required","{""first_name"": ""Nobody""}"'


def test_report_without_errors_is_a_client_error(write_csv, make_upload):
    path = write_csv(["email"], [["a@example.com"]])
    upload = make_upload(path)
    process_upload(upload.id, path)
    assert upload.status == ContactUploadStatus.COMPLETED
    assert upload.errors is None

    with pytest.raises(BadRequest) as excinfo:
        build_error_report(upload.id, TENANT_ID)

    assert excinfo.value.message == "No errors found for this upload"


def test_report_is_tenant_scoped(write_csv, make_upload):
    path = write_csv(["email"], [[""], ["x"]])
    upload = make_upload(path)
    upload.errors = [{"row": 2, "message": "bad", "data": {}}]
    db.session.commit()

    with pytest.raises(NotFound):
        build_error_report(upload.id, OTHER_TENANT_ID)

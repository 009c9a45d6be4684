import pytest

from conftest import TENANT_ID
from contact_intake.importer.adapters.spreadsheet import SpreadsheetReader
from contact_intake.importer.pipeline.processor import (
    ContactGroupMissing,
    ProcessorSettings,
    UploadProcessor,
    process_upload,
)
from contact_intake.models import (
    Contact,
    ContactGroupAssociation,
    ContactSourceType,
    ContactUpload,
    ContactUploadStatus,
    db,
)

HEADER = ["phone", "email", "first_name", "last_name", "City"]


def reload_upload(upload_id):
    db.session.expire_all()
    return db.session.get(ContactUpload, upload_id)


def test_row_without_phone_or_email_is_rejected(write_csv, make_upload):
    path = write_csv(
        HEADER,
        [
            ["+919876543210", "", "Asha", "Rao", "Pune"],
            ["", "", "NoContact", "", ""],
            ["", "ravi@example.com", "Ravi", "", "Delhi"],
        ],
    )
    upload = make_upload(path)

    summary = process_upload(upload.id, path)

    job = reload_upload(upload.id)
    assert summary.outcome == "completed"
    assert job.status == ContactUploadStatus.COMPLETED
    assert (job.total_records, job.processed_records) == (3, 3)
    assert (job.accepted_records, job.rejected_records) == (2, 1)
    assert job.errors == [
        {"row": 3, "message": "Either phone or email is required", "data": {"first_name": "NoContact"}}
    ]
    assert job.completed_at is not None
    assert job.completion_percentage == 100
    assert not path.exists()


def test_created_contacts_carry_source_and_metadata(write_csv, make_upload):
    path = write_csv(HEADER, [["098765 43210", "Asha@Example.com", "Asha", "Rao", "Pune"]])
    upload = make_upload(path)

    process_upload(upload.id, path)

    contact = db.session.query(Contact).one()
    assert contact.phone == "+919876543210"
    assert contact.country_code == "91"
    assert contact.email == "asha@example.com"
    assert contact.source_type == ContactSourceType.BULK_UPLOAD
    assert contact.source_id == upload.id
    assert contact.metadata_json == {"City": "Pune", "original_phone": "098765 43210"}


def test_phone_spellings_within_one_file_resolve_to_one_contact(write_csv, make_upload):
    path = write_csv(
        HEADER,
        [
            ["9876543210", "", "Asha", "", ""],
            ["+91 98765 43210", "", "", "Rao", ""],
        ],
    )
    upload = make_upload(path)

    process_upload(upload.id, path)

    contact = db.session.query(Contact).one()
    assert (contact.first_name, contact.last_name) == ("Asha", "Rao")
    assert reload_upload(upload.id).accepted_records == 2


def test_unparseable_phone_is_kept_when_it_has_e164_shape(write_csv, make_upload):
    path = write_csv(HEADER, [["12345", "", "Shape", "", ""], ["abc", "", "Broken", "", ""]])
    upload = make_upload(path)

    process_upload(upload.id, path)

    job = reload_upload(upload.id)
    assert db.session.query(Contact).one().phone == "+12345"
    assert job.errors[0]["row"] == 3
    assert job.errors[0]["message"] == "Invalid phone number format (must be E.164 format)"


def test_repeated_email_across_uploads_updates_one_contact(write_csv, make_upload):
    first_rows = [[f"+9198765432{index:02d}", "", f"P{index}", "", ""] for index in range(4)]
    first_rows.append(["", "shared@example.com", "Meera", "", "Pune"])
    first = write_csv(HEADER + ["Tier"], [row + ["gold"] for row in first_rows], name="first.csv")
    second = write_csv(
        HEADER,
        [["+919811111111", "", "Other", "", ""], ["", "SHARED@example.com", "", "Iyer", "Delhi"]],
        name="second.csv",
    )

    first_upload = make_upload(first)
    process_upload(first_upload.id, first)
    second_upload = make_upload(second)
    process_upload(second_upload.id, second)

    contacts = db.session.query(Contact).filter(Contact.email == "shared@example.com").all()
    assert len(contacts) == 1
    contact = contacts[0]
    assert (contact.first_name, contact.last_name) == ("Meera", "Iyer")
    assert contact.metadata_json == {"City": "Delhi", "Tier": "gold"}
    assert contact.source_id == first_upload.id


def test_group_membership_and_field_values(write_csv, make_upload, contact_group, make_field):
    make_field("tier", "select", validation_rules={"options": ["basic", "pro"]}, default_value="basic")
    make_field("age", "number", validation_rules={"min": 18})
    path = write_csv(
        ["email", "tier", "age"],
        [["a@example.com", "pro", "30"], ["b@example.com", "", "21"], ["c@example.com", "pro", "15"]],
    )
    upload = make_upload(path, contact_group_id=contact_group.id)

    process_upload(upload.id, path, contact_group.id)

    job = reload_upload(upload.id)
    assert (job.accepted_records, job.rejected_records) == (2, 1)
    assert job.errors[0]["row"] == 4
    assert job.errors[0]["message"] == "age must be greater than or equal to 18"
    values = {
        link.contact.email: link.field_values
        for link in db.session.query(ContactGroupAssociation).all()
    }
    assert values == {
        "a@example.com": {"tier": "pro", "age": "30"},
        "b@example.com": {"tier": "basic", "age": "21"},
    }


def test_annotate_policy_keeps_invalid_rows(write_csv, make_upload, contact_group, make_field):
    make_field("age", "number", validation_rules={"min": 18})
    path = write_csv(["email", "age"], [["young@example.com", "15"]])
    upload = make_upload(path, contact_group_id=contact_group.id)

    process_upload(upload.id, path, contact_group.id, settings=ProcessorSettings(field_policy="annotate"))

    association = db.session.query(ContactGroupAssociation).one()
    assert reload_upload(upload.id).accepted_records == 1
    assert association.field_values["age"] == "15"
    assert association.field_values["_violations"][0]["rule"] == "min"


def test_reprocessing_a_file_does_not_duplicate_memberships(write_csv, make_upload, contact_group):
    rows = [["+919876543210", "asha@example.com", "Asha", "", ""]]
    first = write_csv(HEADER, rows, name="one.csv")
    second = write_csv(HEADER, rows, name="two.csv")

    process_upload(make_upload(first).id, first, contact_group.id)
    process_upload(make_upload(second).id, second, contact_group.id)

    assert db.session.query(Contact).count() == 1
    assert db.session.query(ContactGroupAssociation).count() == 1


def test_error_list_is_bounded(write_csv, make_upload):
    path = write_csv(HEADER, [["", "", f"Row{index}", "", ""] for index in range(5)])
    upload = make_upload(path)

    process_upload(upload.id, path, settings=ProcessorSettings(max_errors=2))

    job = reload_upload(upload.id)
    assert job.rejected_records == 5
    assert [entry["row"] for entry in job.errors] == [2, 3]


def test_missing_upload_is_dropped(tmp_path):
    summary = process_upload("does-not-exist", tmp_path / "gone.csv")

    assert summary.outcome == "missing"
    assert db.session.query(ContactUpload).count() == 0


def test_finished_upload_is_skipped_on_redelivery(write_csv, make_upload):
    path = write_csv(HEADER, [["", "a@example.com", "", "", ""]])
    upload = make_upload(path)
    upload.status = ContactUploadStatus.COMPLETED
    db.session.commit()

    summary = process_upload(upload.id, path)

    assert summary.outcome == "skipped"
    assert db.session.query(Contact).count() == 0
    assert path.exists()


def test_missing_group_fails_job_and_keeps_file(write_csv, make_upload):
    path = write_csv(HEADER, [["", "a@example.com", "", "", ""]])
    upload = make_upload(path)

    with pytest.raises(ContactGroupMissing):
        process_upload(upload.id, path, "no-such-group")

    job = reload_upload(upload.id)
    assert job.status == ContactUploadStatus.FAILED
    assert job.errors == [{"row": None, "message": "Contact group no-such-group not found", "data": None}]
    assert job.completed_at is not None
    assert path.exists()


def test_fatal_error_keeps_last_checkpointed_counters(write_csv, make_upload, monkeypatch):
    path = write_csv(HEADER, [["", f"user{index}@example.com", "", "", ""] for index in range(5)])
    upload = make_upload(path)
    original_iter_rows = SpreadsheetReader.iter_rows

    def flaky_iter_rows(self):
        for index, row in enumerate(original_iter_rows(self), start=1):
            if index == 4:
                raise RuntimeError("storage went away")
            yield row

    monkeypatch.setattr(SpreadsheetReader, "iter_rows", flaky_iter_rows)
    processor = UploadProcessor(settings=ProcessorSettings(progress_interval=2))

    with pytest.raises(RuntimeError):
        processor.process(upload.id, path)

    job = reload_upload(upload.id)
    assert job.status == ContactUploadStatus.FAILED
    assert job.total_records == 5
    assert (job.processed_records, job.accepted_records, job.rejected_records) == (2, 2, 0)
    assert job.errors[0]["message"] == "storage went away"
    assert job.completion_percentage == 40
    assert db.session.query(Contact).filter(Contact.tenant_id == TENANT_ID).count() == 2
    assert path.exists()


def test_settings_from_config_rejects_unknown_policy():
    with pytest.raises(ValueError):
        ProcessorSettings.from_config({"CONTACT_UPLOAD_FIELD_POLICY": "ignore"})

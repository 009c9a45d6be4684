# conftest.py

import csv
import os
from pathlib import Path

import pytest

# Set testing environment BEFORE importing app so TestingConfig is selected
os.environ["FLASK_ENV"] = "testing"

from app import create_app  # noqa: E402
from contact_intake.models import ContactGroup, ContactGroupField, ContactUpload, FieldType, db  # noqa: E402

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
USER_ID = "user-1"


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create a test Flask application backed by a per-test SQLite file"""
    temp_db = (tmp_path / "contacts_test.db").as_posix()
    flask_app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
            "SQLALCHEMY_ECHO": False,
            "LOG_LEVEL": "DEBUG",
            "ENABLE_FILE_LOGGING": False,
            "CONTACT_UPLOAD_DIR": str(tmp_path / "uploads"),
            "CELERY_SQLITE_PATH": str(tmp_path / "celery.sqlite"),
            "CELERY_CONFIG": {"task_always_eager": True, "task_eager_propagates": True},
            "WORKER_ENABLED": False,
        },
        instance_path=str(tmp_path / "instance"),
    )

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def auth_headers():
    """Tenant and user headers the gateway would attach"""
    return {"X-Tenant-Id": TENANT_ID, "X-User-Id": USER_ID}


@pytest.fixture
def contact_group(app):
    """A tenant-owned contact group with no fields"""
    group = ContactGroup(tenant_id=TENANT_ID, name="Customers", created_by=USER_ID)
    db.session.add(group)
    db.session.commit()
    return group


@pytest.fixture
def make_field(contact_group):
    """Factory adding a typed field to ``contact_group``"""

    def _make_field(name, field_type="text", *, is_required=False, default_value=None, validation_rules=None):
        field = ContactGroupField(
            contact_group_id=contact_group.id,
            name=name,
            field_type=FieldType(field_type),
            is_required=is_required,
            default_value=default_value,
            validation_rules=validation_rules or {},
        )
        db.session.add(field)
        db.session.commit()
        return field

    return _make_field


@pytest.fixture
def write_csv(tmp_path):
    """Factory writing rows to a CSV file and returning its path"""

    def _write_csv(header, rows, *, name="contacts.csv"):
        path = Path(tmp_path) / name
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(header)
            writer.writerows(rows)
        return path

    return _write_csv


@pytest.fixture
def make_upload(app):
    """Factory creating a pending upload job for a stored file"""

    def _make_upload(path, *, contact_group_id=None, tenant_id=TENANT_ID):
        upload = ContactUpload(
            tenant_id=tenant_id,
            uploaded_by=USER_ID,
            contact_group_id=contact_group_id,
            filename=Path(path).name,
            original_filename=Path(path).name,
            file_size=Path(path).stat().st_size,
        )
        db.session.add(upload)
        db.session.commit()
        return upload

    return _make_upload

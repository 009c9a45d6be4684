# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """Parse an integer setting, falling back to ``default`` on bad input."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return default
    return number


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    ENABLE_CONSOLE_LOGGING = _coerce_bool(os.environ.get("ENABLE_CONSOLE_LOGGING"), default=True)
    ENABLE_FILE_LOGGING = _coerce_bool(os.environ.get("ENABLE_FILE_LOGGING"), default=False)
    LOG_FILE = os.environ.get("LOG_FILE", "logs/contacts.log")

    # Bulk upload configuration
    CONTACT_UPLOAD_DIR = os.environ.get("CONTACT_UPLOAD_DIR")
    CONTACT_UPLOAD_MAX_MB = _coerce_int(os.environ.get("CONTACT_UPLOAD_MAX_MB"), 10, minimum=1)
    CONTACT_UPLOAD_PROGRESS_INTERVAL = _coerce_int(
        os.environ.get("CONTACT_UPLOAD_PROGRESS_INTERVAL"), 10, minimum=1
    )
    CONTACT_UPLOAD_MAX_ERRORS = _coerce_int(os.environ.get("CONTACT_UPLOAD_MAX_ERRORS"), 1000, minimum=1)
    CONTACT_UPLOAD_MESSAGE_TTL_SECONDS = _coerce_int(
        os.environ.get("CONTACT_UPLOAD_MESSAGE_TTL_SECONDS"), 24 * 60 * 60, minimum=1
    )
    CONTACT_UPLOAD_FIELD_POLICY = os.environ.get("CONTACT_UPLOAD_FIELD_POLICY", "reject").strip().lower()
    CONTACT_UPLOAD_TASK_TIME_LIMIT = _coerce_int(os.environ.get("CONTACT_UPLOAD_TASK_TIME_LIMIT"), 60 * 60)
    CONTACT_UPLOAD_TASK_SOFT_TIME_LIMIT = _coerce_int(
        os.environ.get("CONTACT_UPLOAD_TASK_SOFT_TIME_LIMIT"), 55 * 60
    )

    # Contact defaults
    CONTACTS_DEFAULT_PHONE_REGION = os.environ.get("CONTACTS_DEFAULT_PHONE_REGION", "IN").strip().upper()
    CONTACTS_PAGE_SIZE_MAX = _coerce_int(os.environ.get("CONTACTS_PAGE_SIZE_MAX"), 100, minimum=1)

    # Worker configuration
    WORKER_ENABLED = _coerce_bool(os.environ.get("WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    # Get the project root directory (parent of config directory)
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path (3 slashes for absolute path)
    db_path_normalized = os.path.join(instance_path, "contacts_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    WORKER_ENABLED = False
    CELERY_CONFIG = {"task_always_eager": True, "task_eager_propagates": True}


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False

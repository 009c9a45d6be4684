# config/validation.py

"""
Environment variable validation for the contacts service.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

FIELD_POLICIES = ("reject", "annotate")


def _is_positive_int(value: str) -> bool:
    try:
        return int(value) > 0
    except (TypeError, ValueError):
        return False


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key == "your-secret-key" or secret_key == "your_secret_key":
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if os.environ.get("WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when WORKER_ENABLED=true")
        if not os.environ.get("CELERY_RESULT_BACKEND"):
            errors.append("CELERY_RESULT_BACKEND is required when WORKER_ENABLED=true")

    policy = os.environ.get("CONTACT_UPLOAD_FIELD_POLICY")
    if policy is not None and policy.strip().lower() not in FIELD_POLICIES:
        errors.append(f"CONTACT_UPLOAD_FIELD_POLICY must be one of: {', '.join(FIELD_POLICIES)}")

    for key in (
        "CONTACT_UPLOAD_MAX_MB",
        "CONTACT_UPLOAD_PROGRESS_INTERVAL",
        "CONTACT_UPLOAD_MAX_ERRORS",
        "CONTACT_UPLOAD_MESSAGE_TTL_SECONDS",
    ):
        raw_value = os.environ.get(key)
        if raw_value is not None and not _is_positive_int(raw_value):
            errors.append(f"{key} must be a positive integer")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)

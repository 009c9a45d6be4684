"""
Contact upload feature package.

Registers the upload worker's Celery app and CLI on a Flask application and
records the feature state inside ``app.extensions['contact_uploads']``.
"""

from __future__ import annotations

from flask import Flask

from .celery_app import ensure_celery_app, get_celery_app
from .cli import contacts_cli

CONTACT_UPLOADS_EXTENSION_KEY = "contact_uploads"

__all__ = [
    "init_importer",
    "CONTACT_UPLOADS_EXTENSION_KEY",
    "get_celery_app",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        CONTACT_UPLOADS_EXTENSION_KEY,
        {
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask) -> None:
    # Avoid duplicate registrations when running tests
    command_name = contacts_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)
    app.cli.add_command(contacts_cli)


def init_importer(app: Flask) -> None:
    """
    Bind the upload worker to ``app``: extension state, Celery and CLI.
    """
    state = _ensure_extension_state(app)
    state["worker_enabled"] = bool(app.config.get("WORKER_ENABLED", False))
    ensure_celery_app(app, state)
    _set_cli(app)
    app.logger.info(
        "Contact upload worker configured",
        extra={"worker_enabled": state["worker_enabled"]},
    )

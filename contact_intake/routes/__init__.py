# contact_intake/routes/__init__.py
"""
Application routes package
"""

from .contacts import contacts_blueprint


def register_contact_routes(app):
    # The bulk upload endpoints attach themselves to the contacts blueprint.
    from contact_intake.importer import views  # noqa: F401

    if contacts_blueprint.name not in app.blueprints:
        app.register_blueprint(contacts_blueprint)


def init_routes(app):
    """Initialize all application routes"""
    register_contact_routes(app)

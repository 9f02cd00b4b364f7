from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def init_db(app):
    """Create tables for the flow storage models."""
    with app.app_context():
        from flowforge.models import flow  # noqa: F401
        db.create_all()

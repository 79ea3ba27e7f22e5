"""Application-wide Flask extensions."""

from flask_sqlalchemy import SQLAlchemy


# Shared handle for the server-side session table. The engine is configured in
# :func:`wellness.create_app` so it follows the deployment environment.
db = SQLAlchemy()

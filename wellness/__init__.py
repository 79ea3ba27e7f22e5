"""Flask application factory."""

import logging
import os
import secrets
from datetime import timedelta
from pathlib import Path

import redis
from dotenv import load_dotenv
from flask import Flask
from flask_session import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from .extensions import db
from .guard import enforce_session
from .services.auth_service import AuthService
from .services.backend import resolve_backend
from .services.realtime import ChangeFeed
from .services.storage_service import StorageService


def _resolve_secret_key() -> str:
    """Return a secret key for Flask sessions.

    Production deployments set ``FLASK_SECRET_KEY`` (or the legacy
    ``SECRET_KEY``). Without one a temporary key is generated so the app can
    still boot for local testing; sessions then do not survive a restart.
    """

    for name in ("FLASK_SECRET_KEY", "SECRET_KEY"):
        value = os.environ.get(name)
        if value:
            return value

    return secrets.token_hex(32)


def _bool_from_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app() -> Flask:
    """Configure and return the Flask application."""

    load_dotenv()
    _configure_logging()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = _resolve_secret_key()

    # Without Supabase credentials the backend is ``None``: auth answers with a
    # not-configured error and tracker pages render an explanatory notice.
    backend = resolve_backend(app.config["SECRET_KEY"])
    app.change_feed = ChangeFeed()
    app.auth_service = AuthService(backend)
    app.storage_service = StorageService(backend, app.change_feed)
    app.config["PASSWORD_RESET_REDIRECT_URL"] = os.environ.get("PASSWORD_RESET_REDIRECT_URL")

    # --- Session configuration -----------------------------------------
    is_vercel = _bool_from_env("VERCEL", False) or bool(os.environ.get("VERCEL_ENV"))
    flask_env = os.environ.get("FLASK_ENV", "").lower()
    is_production = flask_env in {"production", "prod"} or is_vercel

    same_site_default = "Lax"
    same_site_env = os.environ.get("SESSION_COOKIE_SAMESITE")
    if same_site_env and same_site_env.lower() == "none":
        same_site_default = "None"

    app.config.update(
        SESSION_PERMANENT=True,
        PERMANENT_SESSION_LIFETIME=timedelta(
            days=int(os.environ.get("SESSION_LIFETIME_DAYS", "14"))
        ),
        SESSION_COOKIE_SECURE=_bool_from_env("SESSION_COOKIE_SECURE", is_production),
        SESSION_COOKIE_SAMESITE=os.environ.get("SESSION_COOKIE_SAMESITE", same_site_default),
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_NAME=os.environ.get("SESSION_COOKIE_NAME", "wellness_session"),
        SESSION_COOKIE_DOMAIN=os.environ.get("SESSION_COOKIE_DOMAIN"),
        SESSION_USE_SIGNER=False,
    )

    redis_url = os.environ.get("UPSTASH_REDIS_URL")
    if redis_url:
        app.config.update(
            SESSION_TYPE="redis",
            SESSION_REDIS=redis.from_url(redis_url),
        )
    else:
        app.config.update(
            SESSION_TYPE="sqlalchemy",
            SESSION_SQLALCHEMY=db,
            SESSION_SQLALCHEMY_TABLE=os.environ.get("SESSION_TABLE", "sessions"),
        )

    database_uri = os.environ.get("SUPABASE_DB_POOL_URL")
    if not database_uri:
        if is_production and not redis_url:
            raise RuntimeError(
                "SUPABASE_DB_POOL_URL or UPSTASH_REDIS_URL is required in production to persist sessions."
            )
        default_sqlite_path = Path(app.instance_path) / "sessions.db"
        default_sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        database_uri = os.environ.get(
            "LOCAL_DATABASE_URI",
            f"sqlite:///{default_sqlite_path}",
        )

    if database_uri.startswith("sqlite:///"):
        sqlite_path = database_uri.replace("sqlite:///", "", 1)
        Path(sqlite_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    sslmode = os.environ.get("DATABASE_SSLMODE")
    if sslmode and "sslmode=" not in database_uri:
        separator = "&" if "?" in database_uri else "?"
        database_uri = f"{database_uri}{separator}sslmode={sslmode}"

    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    engine_options = {"pool_pre_ping": True}
    if is_vercel:
        engine_options["poolclass"] = NullPool
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)

    db.init_app(app)

    # Surface session-store misconfiguration on cold start rather than
    # mid-request.
    if is_production and not redis_url:
        try:
            with app.app_context():
                connection = db.engine.connect()
                connection.close()
        except SQLAlchemyError as exc:  # pragma: no cover - network dependent
            raise RuntimeError("Database connectivity failed for session storage") from exc

    # The session model is registered on the shared metadata; drop a table
    # left over from an earlier factory call before Flask-Session defines it.
    session_table = app.config.get("SESSION_SQLALCHEMY_TABLE")
    if session_table and session_table in db.metadata.tables:
        db.metadata.remove(db.metadata.tables[session_table])

    Session(app)

    if not is_production and not redis_url:
        with app.app_context():
            db.create_all()

    app.before_request(enforce_session)

    from .auth_routes import auth_bp
    from .routes import main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)

    @app.context_processor
    def inject_auth_state():
        from .guard import current_context

        ctx = current_context()
        return {
            "current_user": ctx.user,
            "backend_configured": app.storage_service.configured,
        }

    return app

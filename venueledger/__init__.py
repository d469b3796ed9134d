import os
from datetime import datetime, timedelta

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect
from flask_wtf.csrf import CSRFError
from werkzeug.security import generate_password_hash

load_dotenv()
db = SQLAlchemy()
login_manager = LoginManager()
storage_uri = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
limiter = Limiter(key_func=get_remote_address, storage_uri=storage_uri)
socketio = None


def _get_bool_env(var_name: str, default: bool = False) -> bool:
    """Return a boolean environment variable value."""

    value = os.getenv(var_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_number_env(var_name: str, default):
    """Return a numeric environment variable, falling back to ``default``."""

    value = os.getenv(var_name)
    if value is None or not value.strip():
        return default
    try:
        return type(default)(value.strip())
    except ValueError:
        return default


DEFAULT_CSP = (
    "default-src 'none'; "
    "frame-ancestors 'none'; "
    "form-action 'self'; "
    "base-uri 'self'"
)


@login_manager.user_loader
def load_user(user_id):
    """Retrieve a user by ID for Flask-Login."""
    from venueledger.models import User

    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    """Reject anonymous API calls with a JSON 401."""
    return jsonify({"error": "Unauthorized"}), 401


def create_admin_user():
    """Ensure an admin user exists for the application."""
    from venueledger.models import User

    db.create_all()

    admin_exists = User.query.filter_by(is_admin=True).first()
    if not admin_exists:
        admin_email = os.getenv("ADMIN_EMAIL")
        raw_password = os.getenv("ADMIN_PASS")
        if raw_password is None:
            raise RuntimeError("ADMIN_PASS environment variable not set")
        admin_user = User(
            email=admin_email,
            password=generate_password_hash(raw_password),
            is_admin=True,
            active=True,
        )

        db.session.add(admin_user)
        db.session.commit()
        print("Admin user created.")


def create_app(args: list):
    """Application factory used by Flask."""
    global socketio
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY")
    default_secure_cookies = "--demo" not in args
    session_cookie_secure = _get_bool_env(
        "SESSION_COOKIE_SECURE", default=default_secure_cookies
    )
    app.config["ENFORCE_HTTPS"] = _get_bool_env("ENFORCE_HTTPS", default=False)
    app.config.update(
        SESSION_COOKIE_SECURE=session_cookie_secure,
        REMEMBER_COOKIE_SECURE=session_cookie_secure,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        PERMANENT_SESSION_LIFETIME=timedelta(minutes=30),
    )
    app.config["START_TIME"] = datetime.utcnow()
    app.config["DEMO"] = "--demo" in args

    # Paths are made absolute here so that tests which create the app in a
    # temporary directory and then change back keep pointing at it.
    base_dir = os.getcwd()
    default_db_path = os.path.join(base_dir, "venueledger.db")
    db_path = os.getenv("DATABASE_PATH", default_db_path)
    if os.path.isdir(db_path):
        db_path = os.path.join(db_path, "venueledger.db")

    os.makedirs(os.path.dirname(db_path), exist_ok=True)
    app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{db_path}"
    app.config["STATEMENT_FOLDER"] = os.path.abspath(
        os.getenv("STATEMENT_FOLDER", os.path.join(base_dir, "statements"))
    )
    os.makedirs(app.config["STATEMENT_FOLDER"], exist_ok=True)

    app.config["DEFAULT_VENUE_COMMISSION_RATE"] = _get_number_env(
        "DEFAULT_VENUE_COMMISSION_RATE", 10.0
    )
    app.config["CLOSEOUT_CLAIM_TIMEOUT"] = _get_number_env(
        "CLOSEOUT_CLAIM_TIMEOUT", 300
    )
    app.config["DEFAULT_CURRENCY"] = os.getenv("DEFAULT_CURRENCY", "IDR")
    app.config["PUBLIC_BASE_URL"] = os.getenv("PUBLIC_BASE_URL", "")
    app.config["RATELIMIT_ENABLED"] = _get_bool_env("RATELIMIT_ENABLED", True)

    db.init_app(app)
    from flask_migrate import Migrate

    Migrate(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)
    socketio = SocketIO(app)

    @app.after_request
    def apply_security_headers(response):
        """Attach standard security headers to every response."""
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if request.is_secure or app.config.get("ENFORCE_HTTPS", False):
            response.headers.setdefault(
                "Strict-Transport-Security",
                "max-age=31536000; includeSubDomains; preload",
            )
        response.headers.setdefault(
            "Content-Security-Policy",
            app.config.get("CONTENT_SECURITY_POLICY", DEFAULT_CSP),
        )
        return response

    @app.before_request
    def block_http_options():
        """Return a 405 for HTTP OPTIONS requests to reduce information leakage."""
        if request.method == "OPTIONS":
            return Response(status=405)

    with app.app_context():
        # Ensure models are imported and the schema exists even when
        # migrations have not been executed yet.
        from . import models  # noqa: F401

        db.create_all()

        from venueledger.routes.auth_routes import auth
        from venueledger.routes.closeout_routes import closeout
        from venueledger.routes.table_routes import tables

        app.register_blueprint(auth, url_prefix="/auth")
        app.register_blueprint(closeout)
        app.register_blueprint(tables)

        CSRFProtect(app)

        @app.errorhandler(CSRFError)
        def handle_csrf_error(error):
            """Explain CSRF validation failures to API callers."""
            return jsonify({"error": error.description}), 400

    return app, socketio

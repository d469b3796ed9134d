from __future__ import annotations

import os
import sys

import pytest

from venueledger import create_admin_user, create_app, db
from venueledger.utils import flush_activity_logs

# Ensure the package is importable when tests change directories
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, BASE_DIR)


@pytest.fixture
def app(tmp_path, monkeypatch):
    os.environ.setdefault("SECRET_KEY", "testsecret")
    os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
    os.environ.setdefault("ADMIN_PASS", "adminpass")
    monkeypatch.setenv("RATELIMIT_ENABLED", "0")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "venueledger.db"))
    monkeypatch.setenv("STATEMENT_FOLDER", str(tmp_path / "statements"))
    for key in ("SMTP_HOST", "TWILIO_ACCOUNT_SID"):
        monkeypatch.delenv(key, raising=False)

    cwd = os.getcwd()
    os.chdir(tmp_path)
    app, _ = create_app(["--demo"])
    os.chdir(cwd)

    app.config.update({"TESTING": True, "WTF_CSRF_ENABLED": False})

    with app.app_context():
        db.create_all()
        create_admin_user()

        yield app
        flush_activity_logs()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()

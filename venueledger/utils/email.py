import os
import smtplib
from email.message import EmailMessage
from typing import Sequence

from flask import current_app

_TRUE_VALUES = ("1", "true", "yes", "on")


class SMTPConfigurationError(RuntimeError):
    """Raised when the SMTP configuration is incomplete."""

    def __init__(self, missing_settings: Sequence[str]):
        super().__init__("Missing SMTP settings: " + ", ".join(missing_settings))
        self.missing_settings = list(missing_settings)


def _setting(name: str, default=None):
    """Return ``name`` from the environment, then from the app config."""

    env_value = os.getenv(name)
    if env_value is not None:
        return env_value
    return current_app.config.get(name, default)


def _get_smtp_config() -> dict:
    host = (_setting("SMTP_HOST") or "").strip()
    username = (_setting("SMTP_USERNAME") or "").strip()
    sender = (_setting("SMTP_SENDER") or "").strip()

    missing = []
    if not host:
        missing.append("SMTP_HOST")
    if not sender and not username:
        missing.append("SMTP_SENDER")
    if missing:
        raise SMTPConfigurationError(missing)

    try:
        port = int(str(_setting("SMTP_PORT", 25)))
    except (TypeError, ValueError):
        raise SMTPConfigurationError(["SMTP_PORT"])

    use_tls = _setting("SMTP_USE_TLS", False)
    if not isinstance(use_tls, bool):
        use_tls = str(use_tls).lower() in _TRUE_VALUES

    return {
        "host": host,
        "port": port,
        "username": username,
        "password": _setting("SMTP_PASSWORD") or "",
        "from_address": sender or username,
        "use_tls": use_tls,
    }


def send_email(to_address: str, subject: str, body: str):
    """Send a plain-text email over SMTP."""
    smtp_config = _get_smtp_config()

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = smtp_config["from_address"]
    msg["To"] = to_address
    msg.set_content(body)

    with smtplib.SMTP(smtp_config["host"], smtp_config["port"]) as server:
        if smtp_config["use_tls"]:
            server.starttls()
        if smtp_config["username"]:
            server.login(smtp_config["username"], smtp_config["password"])
        server.send_message(msg)

import os

from twilio.rest import Client


class SMSConfigurationError(RuntimeError):
    """Raised when Twilio credentials are not configured."""


def send_sms(to_number: str, body: str) -> str:
    """Send an SMS through Twilio and return the message SID."""
    account_sid = os.getenv("TWILIO_ACCOUNT_SID")
    auth_token = os.getenv("TWILIO_AUTH_TOKEN")
    from_number = os.getenv("TWILIO_PHONE_NUMBER")
    if not (account_sid and auth_token and from_number):
        raise SMSConfigurationError("Twilio settings not configured")
    client = Client(account_sid, auth_token)
    message = client.messages.create(to=to_number, from_=from_number, body=body)
    return getattr(message, "sid", "")

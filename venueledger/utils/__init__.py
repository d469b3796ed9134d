"""Utility helpers for venue-ledger."""

from .activity import flush_activity_logs, log_activity
from .email import send_email
from .numeric import parse_decimal_string, quantize_money

__all__ = [
    "flush_activity_logs",
    "log_activity",
    "parse_decimal_string",
    "quantize_money",
    "send_email",
]

"""Render payout statements to PDF files."""

from __future__ import annotations

import os
from io import BytesIO
from typing import Sequence

from flask import current_app, render_template, request


def _render_html_to_pdf(html: str, base_url: str | None = None) -> bytes:
    """Render an HTML string to a PDF byte string."""
    # Imported lazily: WeasyPrint loads native libraries on import.
    from weasyprint import HTML

    resolved_base_url = base_url
    if resolved_base_url is None:
        try:
            resolved_base_url = request.url_root
        except RuntimeError:
            resolved_base_url = current_app.root_path

    output = BytesIO()
    try:
        HTML(string=html, base_url=resolved_base_url).write_pdf(output)
        return output.getvalue()
    finally:
        output.close()


def statement_filename(event_id: int, run_id: int) -> str:
    return f"event-{event_id}-payout-run-{run_id}.pdf"


def statement_path(reference: str) -> str:
    """Return the absolute path of a stored statement reference."""

    folder = current_app.config["STATEMENT_FOLDER"]
    path = os.path.abspath(os.path.join(folder, reference))
    if os.path.dirname(path) != os.path.abspath(folder):
        raise ValueError("Invalid statement reference")
    return path


def render_payout_statement_html(run, lines: Sequence, event) -> str:
    currency = event.currency or current_app.config.get("DEFAULT_CURRENCY", "IDR")
    rows = []
    total = 0
    for line in lines:
        breakdown = line.breakdown or {}
        rows.append(
            {
                "promoter": line.promoter.name if line.promoter else f"#{line.promoter_id}",
                "checkins": line.checkins_count,
                "actual_checkins": line.actual_checkins_count,
                "amount": line.commission_amount,
                "detail": breakdown.get("summary", ""),
            }
        )
        total += line.commission_amount
    return render_template(
        "statements/payout_statement.html",
        event=event,
        run=run,
        rows=rows,
        total=total,
        currency=currency,
    )


def generate_payout_statement(run, lines: Sequence, event) -> str:
    """Write the PDF statement for a payout run and return its reference."""

    html = render_payout_statement_html(run, lines, event)
    pdf_bytes = _render_html_to_pdf(html)
    reference = statement_filename(event.id, run.id)
    with open(statement_path(reference), "wb") as handle:
        handle.write(pdf_bytes)
    return reference

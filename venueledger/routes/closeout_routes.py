import os

from flask import Blueprint, jsonify, request, send_file
from flask_login import current_user, login_required

from venueledger.errors import CommissionEngineError, NotFoundError
from venueledger.forms import CloseoutFinalizeForm, ManualAdjustmentForm
from venueledger.models import PayoutRun
from venueledger.services.access import get_event_for
from venueledger.services.closeout import (
    ADJUSTMENT_FIELDS,
    contract_to_dict,
    finalize_closeout,
    preview_closeout,
    save_contract,
    update_manual_adjustment,
)
from venueledger.services.statements import statement_path

closeout = Blueprint("closeout", __name__)


@closeout.errorhandler(CommissionEngineError)
def handle_engine_error(error):
    return jsonify(error.to_dict()), error.status_code


@closeout.route("/events/<int:event_id>/closeout", methods=["GET"])
@login_required
def closeout_preview(event_id):
    """Show the payouts a closeout would produce right now."""
    return jsonify(preview_closeout(event_id, current_user))


@closeout.route("/events/<int:event_id>/closeout/finalize", methods=["POST"])
@login_required
def closeout_finalize(event_id):
    """Close out the event and lock its promoter payouts."""
    form = CloseoutFinalizeForm()
    if not form.validate_on_submit():
        return jsonify({"errors": form.errors}), 400

    result = finalize_closeout(
        event_id,
        current_user,
        total_revenue=form.total_revenue.data,
        closeout_notes=(form.closeout_notes.data or "").strip() or None,
    )
    return jsonify(result.to_dict()), 201


@closeout.route("/events/<int:event_id>/closeout/statement", methods=["GET"])
@login_required
def closeout_statement(event_id):
    """Download the statement of the event's latest payout run."""
    event = get_event_for(current_user, event_id)
    run = (
        PayoutRun.query.filter(
            PayoutRun.event_id == event.id, PayoutRun.statement_ref.isnot(None)
        )
        .order_by(PayoutRun.id.desc())
        .first()
    )
    if run is None:
        raise NotFoundError("No statement has been generated for this event")
    try:
        path = statement_path(run.statement_ref)
    except ValueError:
        raise NotFoundError("Statement not found")
    if not os.path.exists(path):
        raise NotFoundError("Statement not found")
    return send_file(
        path,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=run.statement_ref,
    )


@closeout.route(
    "/events/<int:event_id>/promoters/<int:promoter_id>/contract",
    methods=["PUT"],
)
@login_required
def put_contract(event_id, promoter_id):
    """Create or replace a promoter's commission contract."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Expected a JSON object"}), 400
    contract = save_contract(event_id, promoter_id, current_user, payload)
    return jsonify(contract_to_dict(contract))


@closeout.route(
    "/events/<int:event_id>/promoters/<int:promoter_id>/adjustment",
    methods=["PATCH"],
)
@login_required
def patch_adjustment(event_id, promoter_id):
    """Adjust a promoter's payout or override their check-in count."""
    form = ManualAdjustmentForm()
    if not form.validate_on_submit():
        return jsonify({"errors": form.errors}), 400

    submitted = request.get_json(silent=True) or request.form
    changes = {}
    for name in ADJUSTMENT_FIELDS:
        if name not in submitted:
            continue
        value = getattr(form, name).data
        if isinstance(value, str):
            value = value.strip() or None
        changes[name] = value
    if not changes:
        return jsonify({"errors": {"form": ["Nothing to update."]}}), 400

    contract = update_manual_adjustment(event_id, promoter_id, current_user, changes)
    return jsonify(contract_to_dict(contract))

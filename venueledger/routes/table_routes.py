from flask import Blueprint, jsonify, make_response, request
from flask_login import current_user, login_required

from venueledger.errors import CommissionEngineError
from venueledger.services.table_commissions import (
    calculate_table_commissions,
    export_table_commissions_csv,
    import_actual_spend,
    list_table_commissions,
    lock_table_commissions,
)

tables = Blueprint("tables", __name__)


@tables.errorhandler(CommissionEngineError)
def handle_engine_error(error):
    return jsonify(error.to_dict()), error.status_code


@tables.route(
    "/events/<int:event_id>/tables/commissions/calculate", methods=["POST"]
)
@login_required
def calculate_commissions(event_id):
    """Create or refresh commission records for the event's table bookings."""
    return jsonify(calculate_table_commissions(event_id, current_user))


@tables.route("/events/<int:event_id>/tables/commissions", methods=["GET"])
@login_required
def list_commissions(event_id):
    return jsonify(list_table_commissions(event_id, current_user))


@tables.route("/events/<int:event_id>/tables/commissions/export", methods=["GET"])
@login_required
def export_commissions(event_id):
    """Download the event's table commissions as CSV."""
    csv_response = make_response(export_table_commissions_csv(event_id, current_user))
    csv_response.headers["Content-Type"] = "text/csv"
    filename = f"table-commissions-event-{event_id}.csv"
    csv_response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return csv_response


@tables.route("/events/<int:event_id>/tables/spend", methods=["POST"])
@login_required
def import_spend(event_id):
    """Record actual spend for a batch of bookings."""
    payload = request.get_json(silent=True)
    entries = payload.get("entries") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        return jsonify({"errors": {"entries": ["Provide a list of spend entries."]}}), 400
    return jsonify(import_actual_spend(event_id, current_user, entries))


@tables.route("/events/<int:event_id>/tables/commissions/lock", methods=["POST"])
@login_required
def lock_commissions(event_id):
    """Lock the event's table commissions so they can no longer change."""
    return jsonify(lock_table_commissions(event_id, current_user))

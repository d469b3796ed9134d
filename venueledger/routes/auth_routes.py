from flask import Blueprint, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from venueledger import limiter
from venueledger.forms import LoginForm
from venueledger.models import User
from venueledger.utils.activity import log_activity

auth = Blueprint("auth", __name__)


@auth.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    """Authenticate a user and start their session."""
    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify({"errors": form.errors}), 400

    user = User.query.filter_by(email=form.email.data).first()
    if not user or not check_password_hash(user.password, form.password.data):
        return jsonify({"error": "Please check your login details and try again."}), 401
    if not user.active:
        return (
            jsonify({"error": "Please contact system admin to activate account."}),
            403,
        )

    login_user(user)
    log_activity("Logged in", user.id)
    return jsonify({"success": True, "user_id": user.id, "is_admin": user.is_admin})


@auth.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log the current user out."""
    user_id = current_user.id
    logout_user()
    log_activity("Logged out", user_id)
    return jsonify({"success": True})

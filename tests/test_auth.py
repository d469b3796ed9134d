from werkzeug.security import generate_password_hash

from venueledger import db
from venueledger.models import ActivityLog, User
from venueledger.utils.activity import log_activity
from tests.utils import login


def test_login_and_logout(client, app):
    response = login(client, "admin@example.com", "adminpass")

    assert response.status_code == 200
    assert response.get_json()["is_admin"] is True
    assert client.post("/auth/logout").status_code == 200
    assert client.post("/auth/logout").status_code == 401

    with app.app_context():
        activities = [log.activity for log in ActivityLog.query.order_by(ActivityLog.id)]
        assert activities == ["Logged in", "Logged out"]


def test_inactive_user_cannot_login(client, app):
    with app.app_context():
        db.session.add(
            User(
                email="inactive@example.com",
                password=generate_password_hash("pass"),
                active=False,
            )
        )
        db.session.commit()

    response = login(client, "inactive@example.com", "pass")

    assert response.status_code == 403


def test_login_validates_email(client):
    response = login(client, "not-an-email", "pass")

    assert response.status_code == 400
    assert "email" in response.get_json()["errors"]


def test_log_activity_records_user(app):
    with app.app_context():
        admin = User.query.filter_by(is_admin=True).first()
        log_activity("Reviewed payouts", admin.id)

        entry = ActivityLog.query.one()
        assert entry.activity == "Reviewed payouts"
        assert entry.user_id == admin.id

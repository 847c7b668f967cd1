from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

from sqlalchemy import select

from docportal.core.security import hash_token
from docportal.models.identities import PasswordResetToken
from docportal.services import password_reset_service
from docportal.services.notification_service import TemplateKind
from docportal.tests.conftest import PASSWORD


def _request_reset(client, sender, email="lead@example.com") -> str:
    response = client.post("/password/forgot", json={"email": email})
    assert response.status_code == 200
    notification = sender.of_kind(TemplateKind.PASSWORD_RESET)[-1]
    return parse_qs(urlparse(notification.variables["resetLink"]).query)["token"][0]


def test_forgot_password_returns_generic_message_for_unknown_email(client, sender):
    response = client.post("/password/forgot", json={"email": "missing@example.com"})

    assert response.status_code == 200
    assert response.json() == {
        "message": "If the email address is valid, instructions will be sent."
    }
    assert sender.sent == []


def test_forgot_password_creates_token_and_sends_email(
    client, db_session, sender, organization
):
    _, lead = organization

    response = client.post("/password/forgot", json={"email": "LEAD@example.com"})

    assert response.status_code == 200
    (notification,) = sender.of_kind(TemplateKind.PASSWORD_RESET)
    assert notification.to_address == "lead@example.com"
    assert notification.variables["userName"] == lead.display_name

    parsed = urlparse(notification.variables["resetLink"])
    token = parse_qs(parsed.query)["token"][0]
    assert parsed.scheme == "https"
    assert parsed.netloc == "portal.example.com"
    assert parsed.path == "/reset-password"

    db_session.expire_all()
    stored = db_session.execute(select(PasswordResetToken)).scalar_one()
    assert stored.identity_id == lead.id
    assert stored.token_hash == hash_token(token)


def test_reset_password_updates_password_and_marks_token_used(
    client, ctx, sender, organization
):
    _, lead = organization
    raw_token = _request_reset(client, sender)

    response = client.post(
        "/password/reset", json={"token": raw_token, "password": "new-password-123"}
    )

    assert response.status_code == 200
    assert ctx.identity.authenticate("lead@example.com", "new-password-123").id == lead.id

    reused = client.post(
        "/password/reset", json={"token": raw_token, "password": "another-password"}
    )
    assert reused.status_code == 401
    assert reused.json()["kind"] == "invalid_or_expired_token"


def test_new_request_invalidates_earlier_tokens(client, sender, organization):
    first = _request_reset(client, sender)
    second = _request_reset(client, sender)

    stale = client.post(
        "/password/reset", json={"token": first, "password": "new-password-123"}
    )
    fresh = client.post(
        "/password/reset", json={"token": second, "password": "new-password-123"}
    )

    assert stale.status_code == 401
    assert fresh.status_code == 200


def test_expired_token_is_rejected(client, db_session, sender, organization):
    raw_token = _request_reset(client, sender)
    stored = db_session.execute(select(PasswordResetToken)).scalar_one()
    stored.expires_at = datetime.now(UTC) - timedelta(minutes=1)
    db_session.commit()

    response = client.post(
        "/password/reset", json={"token": raw_token, "password": "new-password-123"}
    )

    assert response.status_code == 401


def test_reset_enforces_password_policy(client, ctx, sender, organization):
    raw_token = _request_reset(client, sender)

    response = client.post("/password/reset", json={"token": raw_token, "password": "short"})

    assert response.status_code == 400
    assert response.json()["kind"] == "weak_password"
    assert ctx.identity.authenticate("lead@example.com", PASSWORD)


def test_request_for_unknown_email_returns_nothing(ctx):
    assert password_reset_service.request_password_reset(ctx, "nobody@example.com") is None


def test_reset_link_uses_base_url():
    assert (
        password_reset_service.reset_link("https://portal.example.com/", "abc")
        == "https://portal.example.com/reset-password?token=abc"
    )

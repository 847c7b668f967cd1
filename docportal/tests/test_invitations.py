from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from docportal.core.record_store import INVITATIONS
from docportal.schemas.accounts import Role
from docportal.schemas.invitations import InvitationStatus
from docportal.services import account_service
from docportal.services.context import utcnow
from docportal.services.notification_service import TemplateKind
from docportal.services.records import load_account, load_distributor, load_invitation
from docportal.tests.conftest import PASSWORD, add_account, bearer

INSTALLER_INVITE = {
    "email": "ian@example.com",
    "name": "Ian Installer",
    "role": "installer",
    "company_name": "Roofers Ltd",
}


def _invite(client, inviter, payload=INSTALLER_INVITE):
    response = client.post("/invitations", json=payload, headers=bearer(inviter))
    assert response.status_code == 201, response.text
    return response.json()


def _token_from(notification) -> str:
    link = urlparse(notification.variables["invitationLink"])
    return parse_qs(link.query)["token"][0]


def _expire(ctx, invitation_id: str) -> None:
    ctx.store.set(
        INVITATIONS,
        invitation_id,
        {"expires_at": (utcnow() - timedelta(minutes=1)).isoformat()},
        merge=True,
    )


@pytest.fixture
def invited(client, ctx, sender, organization):
    """A pending installer invitation sent by the organization admin."""
    _, lead = organization
    body = _invite(client, lead)
    (notification,) = sender.of_kind(TemplateKind.INSTALLER_INVITATION)
    return body["invitation"], _token_from(notification)


def test_installer_invitation_is_stored_and_emailed(client, ctx, sender, organization):
    distributor, lead = organization

    body = _invite(client, lead)

    assert body["email_sent"] is True
    assert body["warnings"] == []
    assert "token" not in body["invitation"]
    invitation = load_invitation(ctx.store, body["invitation"]["id"])
    assert invitation.status is InvitationStatus.PENDING
    assert invitation.inviter_id == lead.id
    assert invitation.inviter_company == "Acme Solar"
    assert invitation.distributor_id == distributor.id
    assert invitation.expires_at - invitation.created_at == timedelta(days=7)
    assert invitation.last_sent_at is not None

    (notification,) = sender.of_kind(TemplateKind.INSTALLER_INVITATION)
    assert notification.to_address == "ian@example.com"
    assert notification.variables["companyName"] == "Roofers Ltd"
    assert notification.variables["inviterCompany"] == "Acme Solar"
    link = urlparse(notification.variables["invitationLink"])
    assert f"{link.scheme}://{link.netloc}{link.path}" == (
        "https://portal.example.com/accept-invitation"
    )
    query = parse_qs(link.query)
    assert query["role"] == ["installer"]
    assert query["token"] == [invitation.token]


def test_accepting_creates_account_in_inviters_network(client, ctx, invited, organization):
    distributor, lead = organization
    invitation, token = invited

    verify = client.post("/invitations/verify", json={"token": token})
    assert verify.status_code == 200
    assert verify.json()["email"] == "ian@example.com"
    assert verify.json()["company_name"] == "Roofers Ltd"

    response = client.post(
        "/invitations/accept", json={"token": token, "password": PASSWORD}
    )

    assert response.status_code == 201
    account = response.json()["account"]
    assert account["role"] == "installer"
    assert account["distributor_id"] == distributor.id
    assert account["created_by"] == lead.id
    assert account["display_name"] == "Ian Installer"
    assert account["id"] in load_account(ctx.store, lead.id).managed_users

    stored = load_invitation(ctx.store, invitation["id"])
    assert stored.status is InvitationStatus.ACCEPTED
    assert stored.account_id == account["id"]
    assert stored.accepted_at is not None


def test_invitation_cannot_be_used_twice(client, invited):
    _, token = invited
    first = client.post("/invitations/accept", json={"token": token, "password": PASSWORD})
    assert first.status_code == 201

    second = client.post(
        "/invitations/accept", json={"token": token, "password": PASSWORD}
    )

    assert second.status_code == 409
    assert second.json()["kind"] == "invitation_already_used"


def test_expired_invitation_is_refused_even_if_stored_pending(client, ctx, invited):
    invitation, token = invited
    _expire(ctx, invitation["id"])
    assert load_invitation(ctx.store, invitation["id"]).status is InvitationStatus.PENDING

    response = client.post(
        "/invitations/accept", json={"token": token, "password": PASSWORD}
    )

    assert response.status_code == 409
    assert response.json()["kind"] == "invitation_expired"
    assert ctx.identity.find_by_email("ian@example.com") is None
    assert load_invitation(ctx.store, invitation["id"]).status is InvitationStatus.EXPIRED


def test_unknown_token_is_not_found(client):
    response = client.post("/invitations/verify", json={"token": "not-a-token"})

    assert response.status_code == 404
    assert response.json()["kind"] == "invitation_not_found"


def test_failed_email_keeps_invitation_with_warning(client, ctx, sender, organization):
    _, lead = organization
    sender.fail_with = "SMTP relay refused"

    body = _invite(client, lead)

    assert body["email_sent"] is False
    assert len(body["warnings"]) == 1
    assert "SMTP relay refused" in body["warnings"][0]
    stored = load_invitation(ctx.store, body["invitation"]["id"])
    assert stored.status is InvitationStatus.PENDING
    assert stored.last_sent_at is None


def test_installer_invitation_needs_company(client, organization):
    _, lead = organization

    response = client.post(
        "/invitations",
        json={**INSTALLER_INVITE, "company_name": "  "},
        headers=bearer(lead),
    )

    assert response.status_code == 400


def test_admin_role_cannot_be_invited(client, organization):
    _, lead = organization

    response = client.post(
        "/invitations",
        json={**INSTALLER_INVITE, "role": "admin"},
        headers=bearer(lead),
    )

    assert response.status_code == 422


def test_only_organization_admins_invite(client, ctx, admin, organization):
    distributor, _ = organization
    member = add_account(
        ctx, "member@example.com", Role.DISTRIBUTOR, distributor_id=distributor.id
    )

    by_member = client.post("/invitations", json=INSTALLER_INVITE, headers=bearer(member))
    by_admin = client.post("/invitations", json=INSTALLER_INVITE, headers=bearer(admin))

    assert by_member.status_code == 403
    assert by_admin.status_code == 403
    assert ctx.store.query(INVITATIONS) == []


def test_resend_keeps_expiry_and_is_limited_to_inviter(
    client, ctx, sender, invited, organization
):
    distributor, _ = organization
    invitation, _ = invited
    expires_at = load_invitation(ctx.store, invitation["id"]).expires_at
    other_lead = add_account(
        ctx,
        "second@example.com",
        Role.DISTRIBUTOR,
        distributor_id=distributor.id,
        org_admin=True,
    )
    _, lead = organization

    denied = client.post(
        f"/invitations/{invitation['id']}/resend", headers=bearer(other_lead)
    )
    resent = client.post(f"/invitations/{invitation['id']}/resend", headers=bearer(lead))

    assert denied.status_code == 403
    assert resent.status_code == 200
    assert len(sender.of_kind(TemplateKind.INSTALLER_INVITATION)) == 2
    assert load_invitation(ctx.store, invitation["id"]).expires_at == expires_at


def test_resend_reports_delivery_failure(client, sender, invited, organization):
    _, lead = organization
    invitation, _ = invited
    sender.fail_with = "mailbox unavailable"

    response = client.post(f"/invitations/{invitation['id']}/resend", headers=bearer(lead))

    assert response.status_code == 502
    assert response.json()["kind"] == "notification_failed"


def test_resend_of_expired_invitation_is_refused(client, ctx, invited, organization):
    _, lead = organization
    invitation, _ = invited
    _expire(ctx, invitation["id"])

    response = client.post(f"/invitations/{invitation['id']}/resend", headers=bearer(lead))

    assert response.status_code == 409
    assert response.json()["kind"] == "invitation_expired"


def test_inviter_and_admin_can_delete(client, ctx, admin, sender, organization):
    _, lead = organization
    first = _invite(client, lead)["invitation"]
    second = _invite(client, lead, {**INSTALLER_INVITE, "email": "other@example.com"})[
        "invitation"
    ]

    by_inviter = client.delete(f"/invitations/{first['id']}", headers=bearer(lead))
    by_admin = client.delete(f"/invitations/{second['id']}", headers=bearer(admin))

    assert by_inviter.status_code == 204
    assert by_admin.status_code == 204
    assert ctx.store.query(INVITATIONS) == []

    missing = client.delete(f"/invitations/{first['id']}", headers=bearer(admin))
    assert missing.status_code == 404


def test_list_shows_effective_status(client, ctx, admin, invited, organization):
    _, lead = organization
    invitation, _ = invited
    _expire(ctx, invitation["id"])

    expired = client.get("/invitations", params={"status": "expired"}, headers=bearer(lead))
    pending = client.get("/invitations", params={"status": "pending"}, headers=bearer(lead))

    assert [item["id"] for item in expired.json()] == [invitation["id"]]
    assert expired.json()[0]["status"] == "expired"
    assert pending.json() == []
    assert len(client.get("/invitations", headers=bearer(admin)).json()) == 1


def test_installers_have_no_invitations(client, ctx, organization):
    distributor, _ = organization
    installer = add_account(
        ctx, "field@example.com", Role.INSTALLER, distributor_id=distributor.id
    )

    assert client.get("/invitations", headers=bearer(installer)).status_code == 403


def test_distributor_invitation_joins_team(client, ctx, sender, organization):
    distributor, lead = organization
    _invite(
        client,
        lead,
        {"email": "dana@example.com", "name": "Dana", "role": "distributor"},
    )
    (notification,) = sender.of_kind(TemplateKind.DISTRIBUTOR_INVITATION)

    response = client.post(
        "/invitations/accept",
        json={
            "token": _token_from(notification),
            "password": PASSWORD,
            "display_name": "Dana D.",
        },
    )

    assert response.status_code == 201
    account = response.json()["account"]
    assert account["display_name"] == "Dana D."
    assert account["is_distributor_admin"] is False
    team = load_distributor(ctx.store, distributor.id)
    assert team.team_members == [lead.id, account["id"]]
    assert team.admin_members == [lead.id]


def test_invitation_of_deleted_inviter_cannot_be_accepted(
    client, ctx, admin, sender, organization
):
    distributor, _ = organization
    second = add_account(
        ctx,
        "second@example.com",
        Role.DISTRIBUTOR,
        distributor_id=distributor.id,
        org_admin=True,
    )
    _invite(client, second)
    (notification,) = sender.of_kind(TemplateKind.INSTALLER_INVITATION)
    account_service.delete_account(ctx, admin, second.id)

    response = client.post(
        "/invitations/accept",
        json={"token": _token_from(notification), "password": PASSWORD},
    )

    assert response.status_code == 404
    assert response.json()["kind"] == "invitation_not_found"
    assert ctx.identity.find_by_email("ian@example.com") is None

"""
HTTP API tests for the engagement lifecycle.

Drives the blueprints through the Flask test client with Bearer tokens and
checks the status-code contract of the error handlers:

    401 no / bad token          403 wrong role or not a party
    404 unknown id              409 illegal state, limit, already accepted
    422 invalid input
"""

import io

import pytest

BASE = "/api/v1"


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def as_client(auth_headers, client_actor):
    return auth_headers(client_actor.id, client_actor.role)


@pytest.fixture()
def as_freelancer(auth_headers, freelancer_actor):
    return auth_headers(freelancer_actor.id, freelancer_actor.role)


@pytest.fixture()
def as_other(auth_headers, other_freelancer):
    return auth_headers(other_freelancer.id, other_freelancer.role)


@pytest.fixture()
def as_admin(auth_headers, admin_actor):
    return auth_headers(admin_actor.id, admin_actor.role)


def _create_project(client, headers, **kw):
    payload = {"title": "Mobile app MVP", "budget_min": 800, "budget_max": 1500}
    payload.update(kw)
    res = client.post(f"{BASE}/projects", json=payload, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _submit_proposal(client, headers, project_id, budget=950):
    res = client.post(f"{BASE}/projects/{project_id}/proposals", json={
        "proposed_budget": budget, "estimated_duration": "3 weeks", "cover_letter": "Shipped 10 apps",
    }, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _accepted(client, as_client, as_freelancer, budget=900):
    project = _create_project(client, as_client)
    proposal = _submit_proposal(client, as_freelancer, project["id"], budget)
    res = client.post(f"{BASE}/proposals/{proposal['id']}/accept", headers=as_client)
    assert res.status_code == 200, res.get_json()
    return project["id"], proposal["id"]


def _funded(client, as_client, as_freelancer, as_admin):
    project_id, _ = _accepted(client, as_client, as_freelancer)
    res = client.post(f"{BASE}/projects/{project_id}/escrow/payment-proof",
                      json={"proof_reference": "wire-1"}, headers=as_client)
    assert res.status_code == 200
    res = client.post(f"{BASE}/projects/{project_id}/escrow/verify", headers=as_admin)
    assert res.status_code == 200
    return project_id


# ═════════════════════════════════════════════════════════════════════════════
# Authentication / authorization
# ═════════════════════════════════════════════════════════════════════════════


class TestAuth:
    def test_missing_token_is_401(self, client):
        res = client.get(f"{BASE}/projects")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token_is_401(self, client):
        res = client.get(f"{BASE}/projects", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_wrong_role_is_403(self, client, as_freelancer):
        res = client.post(f"{BASE}/projects", json={"title": "x"}, headers=as_freelancer)
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_UNAUTHORIZED"
        assert body["details"]["required"] == "client"

    def test_health_needs_no_token(self, client):
        res = client.get(f"{BASE}/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_liveness_checks_database(self, client):
        res = client.get(f"{BASE}/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


# ═════════════════════════════════════════════════════════════════════════════
# Projects & proposals
# ═════════════════════════════════════════════════════════════════════════════


class TestProjectsApi:
    def test_create_and_get(self, client, as_client, as_freelancer):
        project = _create_project(client, as_client, required_skills=["flutter"])
        assert project["status"] == "open"
        assert project["escrow"]["escrow_status"] is None

        res = client.get(f"{BASE}/projects/{project['id']}?include=children", headers=as_freelancer)
        assert res.status_code == 200
        assert res.get_json()["proposals"] == []

    def test_validation_is_422(self, client, as_client):
        res = client.post(f"{BASE}/projects", json={"title": ""}, headers=as_client)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"title": "required"}

    def test_unknown_project_is_404(self, client, as_client):
        res = client.get(f"{BASE}/projects/999", headers=as_client)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_mine(self, client, as_client, as_freelancer, auth_headers):
        _create_project(client, as_client)
        _create_project(client, auth_headers(555, "client"), title="Someone else's")
        res = client.get(f"{BASE}/projects?mine=1", headers=as_client)
        assert res.get_json()["total"] == 1

    def test_unknown_route_is_json_404(self, client, as_client):
        res = client.get(f"{BASE}/nope", headers=as_client)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_HTTP_404"


class TestProposalsApi:
    def test_negotiation_limit_is_409(self, client, as_client, as_freelancer):
        project = _create_project(client, as_client)
        proposal = _submit_proposal(client, as_freelancer, project["id"], 950)
        url = f"{BASE}/proposals/{proposal['id']}/counter-offer"

        res = client.post(url, json={"new_budget": 900, "note": "Budget cap"}, headers=as_client)
        assert res.status_code == 200
        assert res.get_json()["status"] == "negotiating"

        res = client.post(url, json={"new_budget": 920}, headers=as_freelancer)
        body = res.get_json()
        assert body["status"] == "final_offer"
        assert [h["round"] for h in body["negotiation_history"]] == [1, 2]

        res = client.post(url, json={"new_budget": 910}, headers=as_client)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_NEGOTIATION_LIMIT"

        res = client.post(f"{BASE}/proposals/{proposal['id']}/accept", headers=as_client)
        assert res.status_code == 200
        data = res.get_json()
        assert data["proposal"]["status"] == "accepted"
        assert data["project"]["freelancer_id"] == proposal["freelancer_id"]
        assert data["project"]["escrow"]["escrow_amount"] == 920.0
        assert data["project"]["escrow"]["platform_fee_amount"] == 46.0

    def test_second_accept_is_409(self, client, as_client, as_freelancer, as_other):
        project = _create_project(client, as_client)
        first = _submit_proposal(client, as_freelancer, project["id"])
        second = _submit_proposal(client, as_other, project["id"])
        assert client.post(f"{BASE}/proposals/{first['id']}/accept", headers=as_client).status_code == 200

        res = client.post(f"{BASE}/proposals/{second['id']}/accept", headers=as_client)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_ALREADY_ACCEPTED"

    def test_invalid_budget_is_422(self, client, as_client, as_freelancer):
        project = _create_project(client, as_client)
        res = client.post(f"{BASE}/projects/{project['id']}/proposals",
                          json={"proposed_budget": "abc", "cover_letter": "hi"}, headers=as_freelancer)
        assert res.status_code == 422

    def test_my_proposals(self, client, as_client, as_freelancer):
        project = _create_project(client, as_client)
        _submit_proposal(client, as_freelancer, project["id"])
        res = client.get(f"{BASE}/proposals/mine", headers=as_freelancer)
        assert res.get_json()["total"] == 1

    def test_withdraw_then_decline_is_409(self, client, as_client, as_freelancer):
        project = _create_project(client, as_client)
        proposal = _submit_proposal(client, as_freelancer, project["id"])
        res = client.post(f"{BASE}/proposals/{proposal['id']}/withdraw", headers=as_freelancer)
        assert res.get_json()["status"] == "withdrawn"
        res = client.post(f"{BASE}/proposals/{proposal['id']}/decline", headers=as_client)
        assert res.status_code == 409
        assert res.get_json()["details"]["actual"] == "withdrawn"


# ═════════════════════════════════════════════════════════════════════════════
# Escrow
# ═════════════════════════════════════════════════════════════════════════════


class TestEscrowApi:
    def test_full_escrow_flow(self, client, as_client, as_freelancer, as_admin):
        project_id = _funded(client, as_client, as_freelancer, as_admin)

        res = client.get(f"{BASE}/projects/{project_id}/escrow", headers=as_freelancer)
        body = res.get_json()
        assert body["escrow_status"] == "verified_held"
        assert body["project_status"] == "in_progress"
        assert body["contact_shared_at"] is not None

        res = client.post(f"{BASE}/projects/{project_id}/deliverables",
                          json={"title": "Release build", "is_final": True}, headers=as_freelancer)
        assert res.status_code == 201

        res = client.post(f"{BASE}/projects/{project_id}/escrow/request-release", headers=as_client)
        assert res.get_json()["escrow_status"] == "pending_release"

        res = client.get(f"{BASE}/admin/escrow/pending-releases", headers=as_admin)
        assert [row["project_id"] for row in res.get_json()["items"]] == [project_id]

        res = client.post(f"{BASE}/projects/{project_id}/escrow/release",
                          json={"transaction_reference": "payout-1"}, headers=as_admin)
        body = res.get_json()
        assert body["escrow_status"] == "released"
        assert body["project_status"] == "completed"

        res = client.get(f"{BASE}/projects/{project_id}/escrow/transactions", headers=as_client)
        assert [t["transaction_type"] for t in res.get_json()["items"]] == [
            "escrow_initialized", "payment_submitted", "payment_verified",
            "release_requested", "payment_released",
        ]

        res = client.get(f"{BASE}/admin/escrow/platform-fees", headers=as_admin)
        assert res.get_json()["total_platform_fees"] == 45.0

    def test_release_before_request_is_409(self, client, as_client, as_freelancer, as_admin):
        project_id = _funded(client, as_client, as_freelancer, as_admin)
        res = client.post(f"{BASE}/projects/{project_id}/escrow/release", headers=as_admin)
        assert res.status_code == 409
        details = res.get_json()["details"]
        assert details["expected"] == ["pending_release"]
        assert details["actual"] == "verified_held"

    def test_client_cannot_verify(self, client, as_client, as_freelancer):
        project_id, _ = _accepted(client, as_client, as_freelancer)
        client.post(f"{BASE}/projects/{project_id}/escrow/payment-proof",
                    json={"proof_reference": "wire-1"}, headers=as_client)
        res = client.post(f"{BASE}/projects/{project_id}/escrow/verify", headers=as_client)
        assert res.status_code == 403

    def test_outsider_cannot_view_escrow(self, client, as_client, as_freelancer, as_other):
        project_id, _ = _accepted(client, as_client, as_freelancer)
        res = client.get(f"{BASE}/projects/{project_id}/escrow", headers=as_other)
        assert res.status_code == 403

    def test_multipart_payment_proof(self, client, as_client, as_freelancer, as_admin):
        project_id, _ = _accepted(client, as_client, as_freelancer)
        res = client.post(
            f"{BASE}/projects/{project_id}/escrow/payment-proof",
            data={"file": (io.BytesIO(b"%PDF-1.4 receipt"), "receipt.pdf"), "payment_method": "bank_transfer"},
            content_type="multipart/form-data",
            headers=as_client,
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["escrow_status"] == "payment_submitted"
        assert body["payment_method"] == "bank_transfer"

        res = client.get(f"{BASE}/projects/{project_id}/escrow/payment-proof", headers=as_admin)
        assert res.get_json()["url"].startswith(f"/files/payment-proofs/{project_id}/")

        res = client.get(f"{BASE}/admin/escrow/pending-verifications", headers=as_admin)
        assert res.get_json()["total"] == 1

    def test_bad_upload_type_is_422(self, client, as_client, as_freelancer):
        project_id, _ = _accepted(client, as_client, as_freelancer)
        res = client.post(
            f"{BASE}/projects/{project_id}/escrow/payment-proof",
            data={"file": (io.BytesIO(b"#!/bin/sh"), "run.sh")},
            content_type="multipart/form-data",
            headers=as_client,
        )
        assert res.status_code == 422

    def test_admin_cancel_requires_outcome(self, client, as_client, as_freelancer, as_admin):
        project_id = _funded(client, as_client, as_freelancer, as_admin)
        res = client.post(f"{BASE}/projects/{project_id}/cancel", json={}, headers=as_admin)
        assert res.status_code == 422
        res = client.post(f"{BASE}/projects/{project_id}/cancel",
                          json={"escrow_outcome": "refunded", "reason": "Fraud"}, headers=as_admin)
        body = res.get_json()
        assert body["status"] == "cancelled"
        assert body["escrow"]["escrow_status"] == "refunded"


# ═════════════════════════════════════════════════════════════════════════════
# Deliverables, milestones, notifications
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkApi:
    def test_deliverable_revision_cycle(self, client, as_client, as_freelancer, as_admin):
        project_id = _funded(client, as_client, as_freelancer, as_admin)
        res = client.post(
            f"{BASE}/projects/{project_id}/deliverables",
            data={"title": "Mockups", "is_final": "false", "file": (io.BytesIO(b"png"), "mock.png")},
            content_type="multipart/form-data",
            headers=as_freelancer,
        )
        assert res.status_code == 201
        deliverable = res.get_json()
        assert deliverable["file_reference"].startswith(f"deliverables/{project_id}/")

        res = client.post(f"{BASE}/deliverables/{deliverable['id']}/request-revision",
                          json={"notes": "Bigger logo"}, headers=as_client)
        assert res.get_json()["revision_number"] == 2

        res = client.post(f"{BASE}/deliverables/{deliverable['id']}/request-revision",
                          json={"notes": "Again"}, headers=as_client)
        assert res.status_code == 409

        res = client.post(f"{BASE}/deliverables/{deliverable['id']}/resubmit",
                          json={"file_reference": "files/v2.png"}, headers=as_freelancer)
        assert res.get_json()["status"] == "submitted"

        res = client.post(f"{BASE}/deliverables/{deliverable['id']}/approve", headers=as_client)
        assert res.get_json()["status"] == "approved"

        res = client.delete(f"{BASE}/deliverables/{deliverable['id']}", headers=as_freelancer)
        assert res.status_code == 409

    def test_milestones(self, client, as_client, as_freelancer, as_admin):
        project_id = _funded(client, as_client, as_freelancer, as_admin)
        res = client.post(f"{BASE}/projects/{project_id}/milestones",
                          json={"title": "Alpha", "due_date": "2031-03-01"}, headers=as_client)
        assert res.status_code == 201
        milestone_id = res.get_json()["id"]

        for action, headers in (("start", as_freelancer), ("complete", as_freelancer), ("approve", as_client)):
            res = client.post(f"{BASE}/milestones/{milestone_id}/{action}", headers=headers)
            assert res.status_code == 200, (action, res.get_json())

        res = client.get(f"{BASE}/projects/{project_id}/milestones", headers=as_freelancer)
        summary = res.get_json()["summary"]
        assert summary["approved"] == 1
        assert summary["total"] == 1

    def test_notification_inbox(self, client, as_client, as_freelancer):
        project = _create_project(client, as_client)
        _submit_proposal(client, as_freelancer, project["id"])

        res = client.get(f"{BASE}/notifications", headers=as_client)
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread_count"] == 1
        assert body["items"][0]["event_kind"] == "proposal_submitted"

        nid = body["items"][0]["id"]
        assert client.post(f"{BASE}/notifications/{nid}/read", headers=as_freelancer).status_code == 403
        assert client.post(f"{BASE}/notifications/{nid}/read", headers=as_client).status_code == 200
        res = client.get(f"{BASE}/notifications/unread-count", headers=as_client)
        assert res.get_json()["unread_count"] == 0
        res = client.post(f"{BASE}/notifications/mark-all-read", headers=as_client)
        assert res.get_json()["marked_read"] == 0


# ═════════════════════════════════════════════════════════════════════════════
# CLI
# ═════════════════════════════════════════════════════════════════════════════


class TestCli:
    def test_platform_fees_command(self, app, client, as_client, as_freelancer, as_admin):
        project_id = _funded(client, as_client, as_freelancer, as_admin)
        client.post(f"{BASE}/projects/{project_id}/submit-for-review", headers=as_freelancer)
        client.post(f"{BASE}/projects/{project_id}/escrow/request-release", headers=as_client)
        client.post(f"{BASE}/projects/{project_id}/escrow/release", headers=as_admin)

        result = app.test_cli_runner().invoke(args=["platform-fees"])
        assert result.exit_code == 0
        assert "Released escrows: 1" in result.output
        assert "45.00" in result.output


# ═════════════════════════════════════════════════════════════════════════════
# Escrow visibility on project reads
# ═════════════════════════════════════════════════════════════════════════════


class TestEscrowVisibility:
    @pytest.fixture()
    def proof_submitted(self, client, as_client, as_freelancer):
        project_id, _ = _accepted(client, as_client, as_freelancer)
        res = client.post(f"{BASE}/projects/{project_id}/escrow/payment-proof",
                          json={"proof_reference": "wire-secret-77"}, headers=as_client)
        assert res.status_code == 200
        return project_id

    def test_outsider_sees_project_without_escrow(self, client, proof_submitted, as_other):
        res = client.get(f"{BASE}/projects/{proof_submitted}", headers=as_other)
        assert res.status_code == 200
        body = res.get_json()
        assert "escrow" not in body
        assert "wire-secret-77" not in res.get_data(as_text=True)

    def test_outsider_list_has_no_escrow(self, client, proof_submitted, as_other):
        res = client.get(f"{BASE}/projects", headers=as_other)
        items = res.get_json()["items"]
        assert [p["id"] for p in items] == [proof_submitted]
        assert all("escrow" not in p for p in items)

    def test_assigned_freelancer_sees_escrow_without_proof(self, client, proof_submitted, as_freelancer):
        res = client.get(f"{BASE}/projects/{proof_submitted}", headers=as_freelancer)
        escrow = res.get_json()["escrow"]
        assert escrow["escrow_status"] == "payment_submitted"
        assert "payment_proof_reference" not in escrow

        res = client.get(f"{BASE}/projects/{proof_submitted}/escrow", headers=as_freelancer)
        body = res.get_json()
        assert body["escrow_status"] == "payment_submitted"
        assert "payment_proof_reference" not in body

    def test_client_and_admin_see_proof_reference(self, client, proof_submitted, as_client, as_admin):
        for headers in (as_client, as_admin):
            res = client.get(f"{BASE}/projects/{proof_submitted}", headers=headers)
            assert res.get_json()["escrow"]["payment_proof_reference"] == "wire-secret-77"


# ═════════════════════════════════════════════════════════════════════════════
# Invitations & quote requests
# ═════════════════════════════════════════════════════════════════════════════


class TestInvitationsApi:
    def test_invite_accept_and_bid(self, client, as_client, as_freelancer, freelancer_actor):
        project = _create_project(client, as_client)
        res = client.post(f"{BASE}/projects/{project['id']}/invitations",
                          json={"freelancer_id": freelancer_actor.id, "message": "Interested?"},
                          headers=as_client)
        assert res.status_code == 201
        invitation = res.get_json()
        assert invitation["status"] == "pending"

        res = client.get(f"{BASE}/invitations/mine?status=pending", headers=as_freelancer)
        assert [i["id"] for i in res.get_json()["items"]] == [invitation["id"]]

        res = client.post(f"{BASE}/invitations/{invitation['id']}/accept", headers=as_freelancer)
        assert res.get_json()["status"] == "accepted"
        res = client.post(f"{BASE}/invitations/{invitation['id']}/decline", headers=as_freelancer)
        assert res.status_code == 409

        _submit_proposal(client, as_freelancer, project["id"])

    def test_duplicate_invite_is_409(self, client, as_client, freelancer_actor):
        project = _create_project(client, as_client)
        payload = {"freelancer_id": freelancer_actor.id}
        client.post(f"{BASE}/projects/{project['id']}/invitations", json=payload, headers=as_client)
        res = client.post(f"{BASE}/projects/{project['id']}/invitations", json=payload, headers=as_client)
        assert res.status_code == 409

    def test_freelancer_cannot_list_project_invitations(self, client, as_client, as_freelancer):
        project = _create_project(client, as_client)
        res = client.get(f"{BASE}/projects/{project['id']}/invitations", headers=as_freelancer)
        assert res.status_code == 403

    def test_quote_request_cycle(self, client, as_client, as_freelancer, as_other, freelancer_actor):
        res = client.post(f"{BASE}/quote-requests", json={
            "freelancer_id": freelancer_actor.id,
            "title": "Data pipeline audit",
            "description": "Review our nightly ETL",
            "deadline": "2030-01-31",
        }, headers=as_client)
        assert res.status_code == 201
        quote = res.get_json()
        assert quote["deadline"] == "2030-01-31"

        res = client.get(f"{BASE}/quote-requests/{quote['id']}", headers=as_other)
        assert res.status_code == 403

        res = client.post(f"{BASE}/quote-requests/{quote['id']}/respond",
                          json={"quoted_amount": "-5"}, headers=as_freelancer)
        assert res.status_code == 422
        res = client.post(f"{BASE}/quote-requests/{quote['id']}/respond",
                          json={"quoted_amount": 1200, "quoted_duration": "2 weeks"}, headers=as_freelancer)
        assert res.get_json()["status"] == "quoted"
        assert res.get_json()["quoted_amount"] == 1200.0

        res = client.post(f"{BASE}/quote-requests/{quote['id']}/withdraw", headers=as_client)
        assert res.status_code == 409

        res = client.get(f"{BASE}/quote-requests", headers=as_client)
        assert res.get_json()["total"] == 1

"""
Invitation and quote request tests (service layer).

Covers:
    - invitations: client-only, one per (project, freelancer), answer once
    - bidding while invited accepts the invitation in the same transaction
    - quote requests: validation, respond / decline / withdraw, visibility
"""

from decimal import Decimal

import pytest

from marketplace.core.exceptions import (
    AlreadyAcceptedError,
    InvalidStateError,
    UnauthorizedError,
    ValidationError,
)
from marketplace.models import db
from marketplace.models.invitation import (
    INVITATION_TRANSITIONS,
    InvitationStatus,
    ProjectInvitation,
    invitation_sources_for,
    quote_sources_for,
)
from marketplace.models.notification import Notification
from marketplace.services import invitation_service, proposal_service


def _quote(client_actor, freelancer_actor, **overrides):
    data = {
        "title": "Logo refresh",
        "description": "Vector logo, three variants",
        "budget_min": 200,
        "budget_max": 400,
        "required_skills": ["illustrator"],
    }
    data.update(overrides)
    return invitation_service.request_quote(client_actor, freelancer_actor.id, data)


# ═════════════════════════════════════════════════════════════════════════════
# Invitations
# ═════════════════════════════════════════════════════════════════════════════


class TestInvite:
    def test_invite_creates_pending_and_notifies(self, open_project, client_actor, freelancer_actor):
        invitation = invitation_service.invite(open_project.id, client_actor, freelancer_actor.id, "Keen?")
        assert invitation.status == "pending"
        assert invitation.message == "Keen?"
        assert invitation.to_dict()["project_title"] == open_project.title

        note = Notification.query.filter_by(user_id=freelancer_actor.id).one()
        assert note.event_kind == "project_invitation"

    def test_only_project_client_invites(self, open_project, freelancer_actor, other_freelancer):
        with pytest.raises(UnauthorizedError):
            invitation_service.invite(open_project.id, freelancer_actor, other_freelancer.id)

    def test_duplicate_invitation_rejected(self, open_project, client_actor, freelancer_actor):
        invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        with pytest.raises(InvalidStateError):
            invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        assert ProjectInvitation.query.count() == 1

    @pytest.mark.parametrize("bad_id", [None, "abc", 0, 100])
    def test_invalid_freelancer_id(self, open_project, client_actor, bad_id):
        with pytest.raises(ValidationError):
            invitation_service.invite(open_project.id, client_actor, bad_id)

    def test_cannot_invite_once_accepted(self, accepted_project, client_actor, other_freelancer):
        with pytest.raises(AlreadyAcceptedError):
            invitation_service.invite(accepted_project.id, client_actor, other_freelancer.id)


class TestAnswerInvitation:
    def test_accept_then_answer_again_fails(self, open_project, client_actor, freelancer_actor):
        invitation = invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        invitation = invitation_service.accept_invitation(invitation.id, freelancer_actor)
        assert invitation.status == "accepted"
        assert invitation.responded_at is not None

        with pytest.raises(InvalidStateError) as exc:
            invitation_service.decline_invitation(invitation.id, freelancer_actor)
        assert exc.value.expected == ("pending",)
        assert exc.value.actual == "accepted"

    def test_only_invited_freelancer_answers(self, open_project, client_actor, freelancer_actor,
                                             other_freelancer):
        invitation = invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        with pytest.raises(UnauthorizedError):
            invitation_service.accept_invitation(invitation.id, other_freelancer)
        with pytest.raises(UnauthorizedError):
            invitation_service.decline_invitation(invitation.id, client_actor)

    def test_decline_notifies_client(self, open_project, client_actor, freelancer_actor):
        invitation = invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        invitation_service.decline_invitation(invitation.id, freelancer_actor)
        assert invitation.status == "declined"
        kinds = [n.event_kind for n in Notification.query.filter_by(user_id=client_actor.id)]
        assert "invitation_declined" in kinds

    def test_cannot_accept_after_project_taken(self, open_project, client_actor, freelancer_actor,
                                               other_freelancer):
        invitation = invitation_service.invite(open_project.id, client_actor, other_freelancer.id)
        bid = proposal_service.submit(open_project.id, freelancer_actor, 900, None, "Pick me")
        proposal_service.accept(bid.id, client_actor)

        with pytest.raises(AlreadyAcceptedError):
            invitation_service.accept_invitation(invitation.id, other_freelancer)
        db.session.expire_all()
        assert db.session.get(ProjectInvitation, invitation.id).status == "pending"


class TestInvitationAndBidding:
    def test_bidding_accepts_pending_invitation(self, open_project, client_actor, freelancer_actor):
        invitation = invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        proposal_service.submit(open_project.id, freelancer_actor, 900, None, "As invited")

        db.session.expire_all()
        assert db.session.get(ProjectInvitation, invitation.id).status == "accepted"

    def test_declined_invitation_does_not_block_bidding(self, open_project, client_actor, freelancer_actor):
        invitation = invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        invitation_service.decline_invitation(invitation.id, freelancer_actor)

        proposal = proposal_service.submit(open_project.id, freelancer_actor, 900, None, "Changed my mind")
        assert proposal.status == "pending"
        db.session.expire_all()
        assert db.session.get(ProjectInvitation, invitation.id).status == "declined"

    def test_uninvited_freelancer_may_still_bid(self, open_project, client_actor, freelancer_actor,
                                                other_freelancer):
        invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        proposal = proposal_service.submit(open_project.id, other_freelancer, 800, None, "Open market")
        assert proposal.freelancer_id == other_freelancer.id

    def test_listing(self, open_project, client_actor, freelancer_actor, other_freelancer, admin_actor):
        invitation_service.invite(open_project.id, client_actor, freelancer_actor.id)
        invitation_service.invite(open_project.id, client_actor, other_freelancer.id)

        assert len(invitation_service.list_for_project(open_project.id, client_actor)) == 2
        assert len(invitation_service.list_for_project(open_project.id, admin_actor)) == 2
        with pytest.raises(UnauthorizedError):
            invitation_service.list_for_project(open_project.id, freelancer_actor)

        mine = invitation_service.list_for_freelancer(freelancer_actor, status="pending")
        assert [i.freelancer_id for i in mine] == [freelancer_actor.id]
        with pytest.raises(ValidationError):
            invitation_service.list_for_freelancer(freelancer_actor, status="maybe")


# ═════════════════════════════════════════════════════════════════════════════
# Quote requests
# ═════════════════════════════════════════════════════════════════════════════


class TestQuoteRequests:
    def test_request_and_respond(self, client_actor, freelancer_actor):
        quote = _quote(client_actor, freelancer_actor)
        assert quote.status == "pending"
        assert quote.required_skills == ["illustrator"]

        quote = invitation_service.respond_to_quote(quote.id, freelancer_actor, "350", "1 week", "Sure")
        assert quote.status == "quoted"
        assert quote.quoted_amount == Decimal("350.00")
        assert quote.quoted_duration == "1 week"
        kinds = [n.event_kind for n in Notification.query.filter_by(user_id=client_actor.id)]
        assert kinds == ["quote_received"]

    def test_request_validation(self, client_actor, freelancer_actor):
        with pytest.raises(ValidationError):
            _quote(client_actor, freelancer_actor, title="  ")
        with pytest.raises(ValidationError):
            _quote(client_actor, freelancer_actor, budget_min=500, budget_max=100)
        with pytest.raises(ValidationError):
            _quote(client_actor, freelancer_actor, required_skills="illustrator")

    def test_only_clients_request(self, freelancer_actor, other_freelancer):
        with pytest.raises(UnauthorizedError):
            _quote(freelancer_actor, other_freelancer)

    def test_answered_quote_is_terminal(self, client_actor, freelancer_actor):
        quote = _quote(client_actor, freelancer_actor)
        invitation_service.decline_quote(quote.id, freelancer_actor, reason="Booked")
        assert quote.response_note == "Booked"

        with pytest.raises(InvalidStateError) as exc:
            invitation_service.withdraw_quote(quote.id, client_actor)
        assert exc.value.expected == ("pending",)
        with pytest.raises(InvalidStateError):
            invitation_service.respond_to_quote(quote.id, freelancer_actor, 300)

    def test_withdraw_by_client_only(self, client_actor, freelancer_actor):
        quote = _quote(client_actor, freelancer_actor)
        with pytest.raises(UnauthorizedError):
            invitation_service.withdraw_quote(quote.id, freelancer_actor)
        assert invitation_service.withdraw_quote(quote.id, client_actor).status == "withdrawn"

    def test_non_positive_quote_rejected(self, client_actor, freelancer_actor):
        quote = _quote(client_actor, freelancer_actor)
        with pytest.raises(ValidationError):
            invitation_service.respond_to_quote(quote.id, freelancer_actor, 0)
        assert quote.status == "pending"

    def test_visibility(self, client_actor, freelancer_actor, other_freelancer, admin_actor):
        quote = _quote(client_actor, freelancer_actor)
        assert invitation_service.get_quote(quote.id, freelancer_actor).id == quote.id
        assert invitation_service.get_quote(quote.id, admin_actor).id == quote.id
        with pytest.raises(UnauthorizedError):
            invitation_service.get_quote(quote.id, other_freelancer)

        assert len(invitation_service.list_quotes(client_actor)) == 1
        assert len(invitation_service.list_quotes(freelancer_actor)) == 1
        assert invitation_service.list_quotes(other_freelancer) == []
        assert len(invitation_service.list_quotes(admin_actor, status="pending")) == 1


# ═════════════════════════════════════════════════════════════════════════════
# Transition tables
# ═════════════════════════════════════════════════════════════════════════════


class TestInvitationTransitionTables:
    def test_answers_are_terminal(self):
        assert INVITATION_TRANSITIONS[InvitationStatus.ACCEPTED] == set()
        assert INVITATION_TRANSITIONS[InvitationStatus.DECLINED] == set()

    def test_sources(self):
        assert invitation_sources_for("declined") == ("pending",)
        assert quote_sources_for("quoted") == ("pending",)
        assert quote_sources_for("pending") == ()

"""
Proposal negotiation engine tests (service layer).

Covers:
    - submission rules (role, open project, one active proposal per freelancer)
    - counter-offers: status progression, history, the two-round ceiling
    - acceptance: siblings rejected, freelancer assigned, escrow opened
    - decline / withdraw and terminal-state guards
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from marketplace.core.exceptions import (
    AlreadyAcceptedError,
    InvalidStateError,
    NegotiationLimitExceededError,
    UnauthorizedError,
    ValidationError,
)
from marketplace.models import db
from marketplace.models.project import Project
from marketplace.models.proposal import (
    PROPOSAL_TRANSITIONS,
    Proposal,
    ProposalOffer,
    ProposalStatus,
    proposal_sources_for,
    validate_proposal_transition,
)
from marketplace.services import proposal_service


def _submit(project, actor, budget=950, pitch="Experienced with this stack"):
    return proposal_service.submit(project.id, actor, budget, "3 weeks", pitch)


# ═════════════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════════════


class TestSubmit:
    def test_submit_creates_pending_proposal(self, open_project, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        assert proposal.status == "pending"
        assert proposal.proposed_budget == Decimal("950.00")
        assert proposal.original_budget == Decimal("950.00")
        assert proposal.negotiation_count == 0
        assert proposal.freelancer_id == freelancer_actor.id

    def test_client_cannot_submit(self, open_project, client_actor):
        with pytest.raises(UnauthorizedError):
            _submit(open_project, client_actor)

    def test_non_positive_budget_rejected(self, open_project, freelancer_actor):
        with pytest.raises(ValidationError):
            _submit(open_project, freelancer_actor, budget=0)
        with pytest.raises(ValidationError):
            _submit(open_project, freelancer_actor, budget="-10")

    def test_pitch_required(self, open_project, freelancer_actor):
        with pytest.raises(ValidationError):
            _submit(open_project, freelancer_actor, pitch="   ")

    def test_one_active_proposal_per_freelancer(self, open_project, freelancer_actor):
        _submit(open_project, freelancer_actor)
        with pytest.raises(InvalidStateError):
            _submit(open_project, freelancer_actor, budget=800)

    def test_duplicate_insert_caught_by_unique_index(self, open_project, freelancer_actor, monkeypatch):
        _submit(open_project, freelancer_actor)
        monkeypatch.setattr(proposal_service, "_ensure_no_active_proposal", lambda *args: None)

        with pytest.raises(InvalidStateError) as exc:
            _submit(open_project, freelancer_actor, budget=800)
        assert "active proposal" in str(exc.value)
        assert Proposal.query.filter_by(freelancer_id=freelancer_actor.id).count() == 1

    def test_resubmit_after_withdraw(self, open_project, freelancer_actor):
        first = _submit(open_project, freelancer_actor)
        proposal_service.withdraw(first.id, freelancer_actor)
        second = _submit(open_project, freelancer_actor, budget=800)
        assert second.id != first.id
        assert second.status == "pending"

    def test_cannot_bid_once_accepted(self, accepted_project, other_freelancer):
        with pytest.raises((AlreadyAcceptedError, InvalidStateError)):
            _submit(accepted_project, other_freelancer)


# ═════════════════════════════════════════════════════════════════════════════
# Counter-offers
# ═════════════════════════════════════════════════════════════════════════════


class TestCounterOffer:
    def test_two_rounds_then_limit(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor, budget=950)

        proposal = proposal_service.counter_offer(proposal.id, client_actor, 900, note="Tighter budget")
        assert proposal.status == "negotiating"
        assert proposal.negotiation_count == 1
        assert proposal.proposed_budget == Decimal("900.00")

        proposal = proposal_service.counter_offer(proposal.id, freelancer_actor, 920)
        assert proposal.status == "final_offer"
        assert proposal.negotiation_count == 2
        assert proposal.rounds_remaining == 0

        with pytest.raises(NegotiationLimitExceededError) as exc:
            proposal_service.counter_offer(proposal.id, client_actor, 910)
        assert exc.value.limit == 2

        db.session.expire_all()
        stored = db.session.get(Proposal, proposal.id)
        assert stored.negotiation_count == 2
        assert stored.proposed_budget == Decimal("920.00")
        assert stored.original_budget == Decimal("950.00")

    def test_history_records_each_round(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor, budget=950)
        proposal_service.counter_offer(proposal.id, client_actor, 900, note="Can you do 900?")
        proposal_service.counter_offer(proposal.id, freelancer_actor, 920)

        history = proposal_service.negotiation_history(proposal.id, client_actor)
        assert [o.round_number for o in history] == [1, 2]
        assert [o.actor_role for o in history] == ["client", "freelancer"]
        assert [o.amount for o in history] == [Decimal("900.00"), Decimal("920.00")]
        assert history[0].note == "Can you do 900?"

    def test_same_party_may_counter_twice(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor, budget=950)
        proposal_service.counter_offer(proposal.id, client_actor, 900)
        proposal = proposal_service.counter_offer(proposal.id, client_actor, 880)
        assert proposal.status == "final_offer"

    def test_counter_must_change_terms(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor, budget=950)
        with pytest.raises(ValidationError):
            proposal_service.counter_offer(proposal.id, client_actor, 950)
        assert ProposalOffer.query.count() == 0

    def test_duration_change_alone_is_a_counter(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor, budget=950)
        proposal = proposal_service.counter_offer(proposal.id, client_actor, 950, new_duration="2 weeks")
        assert proposal.negotiation_count == 1
        assert proposal.estimated_duration == "2 weeks"

    def test_duration_only_counter_keeps_budget(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor, budget=950)
        proposal = proposal_service.counter_offer(proposal.id, freelancer_actor, None, new_duration="10 days")
        assert proposal.status == "negotiating"
        assert proposal.proposed_budget == Decimal("950.00")
        assert proposal.estimated_duration == "10 days"
        assert proposal.offers.one().amount == Decimal("950.00")

    def test_counter_without_budget_or_duration_rejected(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        with pytest.raises(ValidationError):
            proposal_service.counter_offer(proposal.id, client_actor, None)

    def test_non_positive_counter_rejected(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        with pytest.raises(ValidationError):
            proposal_service.counter_offer(proposal.id, client_actor, 0)

    def test_outsider_cannot_counter(self, open_project, freelancer_actor, other_freelancer, admin_actor):
        proposal = _submit(open_project, freelancer_actor)
        with pytest.raises(UnauthorizedError):
            proposal_service.counter_offer(proposal.id, other_freelancer, 800)
        with pytest.raises(UnauthorizedError):
            proposal_service.counter_offer(proposal.id, admin_actor, 800)

    def test_terminal_proposal_cannot_be_countered(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        proposal_service.decline(proposal.id, client_actor)
        with pytest.raises(InvalidStateError):
            proposal_service.counter_offer(proposal.id, client_actor, 800)


# ═════════════════════════════════════════════════════════════════════════════
# Acceptance
# ═════════════════════════════════════════════════════════════════════════════


class TestAccept:
    def test_accept_after_negotiation(self, open_project, client_actor, freelancer_actor, other_freelancer):
        winner = _submit(open_project, freelancer_actor, budget=950)
        loser = _submit(open_project, other_freelancer, budget=1000)
        proposal_service.counter_offer(winner.id, client_actor, 900)
        proposal_service.counter_offer(winner.id, freelancer_actor, 920)

        accepted = proposal_service.accept(winner.id, client_actor)
        assert accepted.status == "accepted"
        assert accepted.decided_at is not None

        db.session.expire_all()
        assert db.session.get(Proposal, loser.id).status == "rejected"
        project = db.session.get(Project, open_project.id)
        assert project.status == "open"
        assert project.freelancer_id == freelancer_actor.id
        assert project.accepted_proposal_id == winner.id
        assert project.escrow_status == "pending_payment"
        assert project.escrow_amount == Decimal("920.00")
        assert project.platform_fee_amount == Decimal("46.00")
        assert project.freelancer_payout_amount == Decimal("874.00")

    def test_only_client_of_project_accepts(self, open_project, freelancer_actor, admin_actor):
        proposal = _submit(open_project, freelancer_actor)
        with pytest.raises(UnauthorizedError):
            proposal_service.accept(proposal.id, freelancer_actor)
        with pytest.raises(UnauthorizedError):
            proposal_service.accept(proposal.id, admin_actor)
        assert db.session.get(Project, open_project.id).accepted_proposal_id is None

    def test_second_accept_fails(self, open_project, client_actor, freelancer_actor, other_freelancer):
        first = _submit(open_project, freelancer_actor)
        second = _submit(open_project, other_freelancer)
        proposal_service.accept(first.id, client_actor)

        with pytest.raises(AlreadyAcceptedError):
            proposal_service.accept(second.id, client_actor)
        assert Proposal.query.filter_by(project_id=open_project.id, status="accepted").count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Decline / withdraw
# ═════════════════════════════════════════════════════════════════════════════


class TestDeclineWithdraw:
    def test_decline(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        proposal = proposal_service.decline(proposal.id, client_actor, reason="Over budget")
        assert proposal.status == "rejected"

    def test_withdraw_only_by_owner(self, open_project, freelancer_actor, other_freelancer):
        proposal = _submit(open_project, freelancer_actor)
        with pytest.raises(UnauthorizedError):
            proposal_service.withdraw(proposal.id, other_freelancer)
        assert proposal_service.withdraw(proposal.id, freelancer_actor).status == "withdrawn"

    def test_withdrawn_cannot_be_accepted(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        proposal_service.withdraw(proposal.id, freelancer_actor)
        with pytest.raises(InvalidStateError):
            proposal_service.accept(proposal.id, client_actor)

    def test_list_for_freelancer(self, open_project, freelancer_actor, other_freelancer):
        _submit(open_project, freelancer_actor)
        _submit(open_project, other_freelancer)
        mine = proposal_service.list_for_freelancer(freelancer_actor)
        assert [p.freelancer_id for p in mine] == [freelancer_actor.id]

    def test_list_for_project_rejects_unknown_status(self, open_project, client_actor):
        with pytest.raises(ValidationError):
            proposal_service.list_for_project(open_project.id, client_actor, status="bogus")


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestProposalTransitionTable:
    def test_terminal_states_have_no_exits(self):
        for status in (ProposalStatus.ACCEPTED, ProposalStatus.REJECTED, ProposalStatus.WITHDRAWN):
            assert PROPOSAL_TRANSITIONS[status] == set()

    def test_negotiation_only_moves_forward(self):
        assert validate_proposal_transition("pending", "negotiating")
        assert validate_proposal_transition("negotiating", "final_offer")
        assert not validate_proposal_transition("final_offer", "negotiating")
        assert not validate_proposal_transition("pending", "final_offer")

    def test_is_terminal(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        assert proposal.is_terminal is False
        proposal_service.decline(proposal.id, client_actor)
        assert proposal.is_terminal is True

    def test_sources_derived_from_table(self):
        assert proposal_sources_for("accepted") == ("pending", "negotiating", "final_offer")
        assert proposal_sources_for("final_offer") == ("negotiating",)
        assert proposal_sources_for("pending") == ()

    def test_service_refuses_moves_outside_table(self, open_project, client_actor, freelancer_actor):
        proposal = _submit(open_project, freelancer_actor)
        proposal_service.counter_offer(proposal.id, client_actor, 900)
        proposal_service.counter_offer(proposal.id, freelancer_actor, 920)

        # A third round would be final_offer -> final_offer, which the table forbids
        db.session.execute(update(Proposal).where(Proposal.id == proposal.id).values(negotiation_count=1))
        db.session.commit()
        with pytest.raises(InvalidStateError) as exc:
            proposal_service.counter_offer(proposal.id, client_actor, 880)
        assert exc.value.expected == ("negotiating",)
        assert exc.value.actual == "final_offer"

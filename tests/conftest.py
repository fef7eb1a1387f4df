"""
Shared pytest fixtures for the Freelance Escrow Marketplace test suite.

Provides:
    - app: Flask application (session-scoped, uploads in a temp folder)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - auth_headers: Bearer-token header factory for API tests
    - client_actor / freelancer_actor / other_freelancer / admin_actor
    - open_project / accepted_project / funded_project: engagements
      pre-driven to a given point of the lifecycle through the services
"""

import pytest

from marketplace import create_app
from marketplace.auth import ADMIN, CLIENT, FREELANCER, Actor
from marketplace.models import db as _db
from marketplace.services import escrow_service, project_service, proposal_service
from marketplace.services.jwt_service import generate_access_token

CLIENT_ID = 100
FREELANCER_ID = 200
OTHER_FREELANCER_ID = 201
ADMIN_ID = 900


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def auth_headers():
    """Return a function building an Authorization header for (user_id, role)."""

    def _headers(user_id, role):
        return {"Authorization": f"Bearer {generate_access_token(user_id, role)}"}

    return _headers


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def client_actor():
    return Actor(id=CLIENT_ID, role=CLIENT)


@pytest.fixture()
def freelancer_actor():
    return Actor(id=FREELANCER_ID, role=FREELANCER)


@pytest.fixture()
def other_freelancer():
    return Actor(id=OTHER_FREELANCER_ID, role=FREELANCER)


@pytest.fixture()
def admin_actor():
    return Actor(id=ADMIN_ID, role=ADMIN)


# ── Engagement fixtures ──────────────────────────────────────────────────


@pytest.fixture()
def open_project(client_actor):
    """An open project posted by the test client."""
    return project_service.create_project(client_actor, {
        "title": "Build a landing page",
        "description": "Responsive, two sections",
        "budget_min": 500,
        "budget_max": 1200,
        "required_skills": ["html", "css"],
    })


@pytest.fixture()
def accepted_project(open_project, client_actor, freelancer_actor):
    """Proposal at 900 accepted: freelancer assigned, escrow pending_payment."""
    proposal = proposal_service.submit(open_project.id, freelancer_actor, 900, "2 weeks", "I can do it")
    proposal_service.accept(proposal.id, client_actor)
    return open_project


@pytest.fixture()
def funded_project(accepted_project, client_actor, admin_actor):
    """Payment verified: escrow verified_held, project in_progress."""
    escrow_service.submit_payment_proof(accepted_project.id, client_actor, "bank-ref-001", "bank_transfer")
    escrow_service.verify(accepted_project.id, admin_actor)
    return accepted_project

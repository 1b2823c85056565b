"""
Shared fixtures for the special request tests.

Each test gets a fresh application bound to its own in-memory SQLite
database. Service tests run inside ``app_ctx``; HTTP tests only use
``client`` and ``auth_headers`` so every request gets its own session.
"""

import pytest
from flask_jwt_extended import create_access_token

from commissions import create_app
from commissions.config import TestingConfig
from commissions.extensions import db
from commissions.models import User
from commissions.services.lifecycle import update_status
from commissions.services.special_request_service import create_request

SENDER_ID = "USR-buyer01"
ARTIST_ID = "USR-artist1"

# status -> steps from pending to reach it
STATUS_PATHS = {
    "pending": [],
    "accepted": ["accepted"],
    "in_progress": ["accepted", "in_progress"],
    "review": ["accepted", "in_progress", "review"],
    "completed": ["accepted", "in_progress", "completed"],
    "rejected": ["rejected"],
    "cancelled": ["cancelled"],
}


# ============================================================
# APPLICATION
# ============================================================

@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.session.add(User(id=ARTIST_ID, display_name="Leo", email="leo@example.com", role="artist"))
        db.session.commit()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def _make(user_id, role="buyer"):
        with app.app_context():
            token = create_access_token(identity=user_id, additional_claims={"role": role})
        return {"Authorization": f"Bearer {token}"}
    return _make


# ============================================================
# DATA
# ============================================================

@pytest.fixture
def request_data():
    return {
        "artist_id": ARTIST_ID,
        "request_type": "portrait",
        "title": "Family portrait",
        "description": "Oil portrait of my family in front of the house",
        "budget": 500,
        "tags": ["oil", "family"],
    }


@pytest.fixture
def make_request(app_ctx, request_data):
    """Create a request and walk it to ``status`` through the real transitions."""
    def _make(status="pending", quoted_price=None, sender_id=SENDER_ID, **overrides):
        data = dict(request_data)
        data.update(overrides)
        special_request = create_request(sender_id, data)
        for step in STATUS_PATHS[status]:
            price = quoted_price if step == "accepted" else None
            update_status(special_request, step, actor_id=data["artist_id"], quoted_price=price)
        return special_request
    return _make


def reload(special_request):
    """Drop in-memory state and read the row back."""
    db.session.expire_all()
    return db.session.get(type(special_request), special_request.id)

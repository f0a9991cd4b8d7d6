"""
Test fixtures for the barter API.

Provides an in-memory Supabase backend wired into the app through
dependency overrides, signed access tokens and factories for users,
conversations, messages and products.
"""

import os
import uuid
from types import SimpleNamespace

import pytest

# Must be in place before the app modules read them
os.environ.setdefault("PUBLIC_SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SECRET_API_KEY", "service-role-test-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-at-least-32-bytes!!")

from fastapi.testclient import TestClient

from barter.main import app as barter_app
from barter.core.supabase_client import get_supabase, get_auth_client

from fake_supabase import FakeSupabase
from helpers import make_token


@pytest.fixture
def fake():
    """Fresh in-memory backend per test."""
    return FakeSupabase()


@pytest.fixture
def realtime(fake):
    return fake.realtime


@pytest.fixture
def app(fake):
    barter_app.dependency_overrides[get_supabase] = lambda: fake
    barter_app.dependency_overrides[get_auth_client] = lambda: fake
    barter_app.state.realtime = fake.realtime
    yield barter_app
    barter_app.dependency_overrides.clear()
    barter_app.state.realtime = None


@pytest.fixture
def client(app):
    # Not entered as a context manager, so the lifespan never dials Supabase
    return TestClient(app)


@pytest.fixture
def create_user(fake):
    """Factory fixture for a user with a profile row and a valid token."""

    def _create_user(full_name="Test User", email=None, **kwargs):
        user_id = kwargs.pop("id", str(uuid.uuid4()))
        email = email or f"{user_id[:8]}@example.com"
        profile = fake.seed(
            "profiles",
            id=user_id,
            full_name=full_name,
            email=email,
            avatar_url=kwargs.pop("avatar_url", None),
            **kwargs,
        )
        token = make_token(user_id, email)
        return SimpleNamespace(
            id=user_id,
            email=email,
            profile=profile,
            token=token,
            headers={"Authorization": f"Bearer {token}"},
        )

    return _create_user


@pytest.fixture
def alice(create_user):
    return create_user("Alice Seller", "alice@example.com")


@pytest.fixture
def bob(create_user):
    return create_user("Bob Buyer", "bob@example.com")


@pytest.fixture
def carol(create_user):
    return create_user("Carol Outsider", "carol@example.com")


@pytest.fixture
def create_conversation(fake):
    """Factory fixture storing a conversation in canonical pair order."""

    def _create_conversation(user_a, user_b, **kwargs):
        u1, u2 = sorted([str(user_a), str(user_b)])
        return fake.seed("conversations", user1_id=u1, user2_id=u2, **kwargs)

    return _create_conversation


@pytest.fixture
def create_message(fake):
    """Factory fixture for a stored message; does not reach live listeners."""

    def _create_message(conversation, sender_id, content="hello", **kwargs):
        return fake.seed(
            "messages",
            conversation_id=conversation["id"],
            sender_id=str(sender_id),
            content=content,
            **kwargs,
        )

    return _create_message


@pytest.fixture
def categories(fake):
    return [
        fake.seed("categories", name=name)
        for name in ("Electronics", "Clothing", "Home Appliances")
    ]


@pytest.fixture
def create_product(fake, categories):
    """Factory fixture for a product listing."""

    def _create_product(owner, **kwargs):
        defaults = {
            "name": "Test Product",
            "description": "",
            "price": 10.0,
            "category_id": categories[0]["id"],
            "user_id": owner.id,
            "image_url": "https://example.com/image.jpg",
            "rating": 4,
        }
        defaults.update(kwargs)
        return fake.seed("products", **defaults)

    return _create_product

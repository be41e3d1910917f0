import json
import os
import time
import uuid
from types import SimpleNamespace

# Settings are read at import time, so the environment goes first.
os.environ["SUPABASE_URL"] = "https://abcdefghijklmnop.supabase.co"
os.environ["SUPABASE_ANON_KEY"] = "test-anon-key"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-enough-length"
os.environ["AUTH_COOKIE_SECURE"] = "false"
os.environ["SESSION_EVENTS_KEEPALIVE_SECONDS"] = "5"
os.environ["LOG_LEVEL"] = "DEBUG"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from jose import jwt
from supabase_auth.errors import AuthError

from presskit_auth.auth_utils import auth_cookie_options
from presskit_auth.config import settings
from presskit_auth.cookie_bridge import CookieSessionStorage, encode_cookie_value
from presskit_auth.main import app, get_auth_client_factory, get_event_hub
from presskit_auth.session_events import SessionEventHub

STORAGE_KEY = settings.AUTH_STORAGE_KEY
VERIFIER_KEY = f"{STORAGE_KEY}-code-verifier"


def make_access_token(user_id: str, email: str, expires_in: int = 3600) -> str:
    return jwt.encode(
        {
            "sub": user_id,
            "email": email,
            "aud": "authenticated",
            "role": "authenticated",
            "exp": int(time.time()) + expires_in,
            "session_id": str(uuid.uuid4()),
            "user_metadata": {"display_name": "DJ Test"},
        },
        settings.SUPABASE_JWT_SECRET,
        algorithm="HS256",
    )


def make_session(user_id: str, email: str, expires_in: int = 3600) -> dict:
    return {
        "access_token": make_access_token(user_id, email, expires_in),
        "refresh_token": f"refresh-{uuid.uuid4().hex}",
        "expires_in": expires_in,
        "expires_at": int(time.time()) + expires_in,
        "token_type": "bearer",
        "user": {"id": user_id, "email": email},
    }


class FakeProviderError(AuthError):
    """AuthError as raised by the Supabase client, without its version-specific constructor."""

    def __init__(self, message: str):
        Exception.__init__(self, message)
        self.message = message


def as_session(data: dict) -> SimpleNamespace:
    return SimpleNamespace(
        access_token=data["access_token"],
        refresh_token=data["refresh_token"],
        expires_at=data["expires_at"],
        user=SimpleNamespace(**data["user"]),
    )


class FakeProvider:
    """Server-side state of the identity provider shared by all fake clients."""

    def __init__(self):
        self.user_id = str(uuid.uuid4())
        self.email = "artist@example.com"
        self.password = "correct-horse"
        self.valid_codes = set()
        self.exchange_calls = []
        self.exchange_error = None
        self.refresh_allowed = True
        self.sign_out_calls = 0
        self.clients = []

    def issue_code(self) -> str:
        code = uuid.uuid4().hex
        self.valid_codes.add(code)
        return code


class FakeAuthClient:
    """Mimics AsyncGoTrueClient's PKCE flow on top of the real cookie storage."""

    def __init__(self, bridge, provider: FakeProvider):
        self.bridge = bridge
        self.provider = provider
        self.storage = CookieSessionStorage(bridge, auth_cookie_options())
        self._callbacks = []
        self.closed = False
        provider.clients.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    def on_auth_state_change(self, callback):
        self._callbacks.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self._callbacks.remove(callback))

    def _notify(self, event, session):
        for callback in list(self._callbacks):
            callback(event, session)

    async def _save(self, data: dict):
        await self.storage.set_item(STORAGE_KEY, json.dumps(data))

    async def exchange_code_for_session(self, params):
        code = params["auth_code"]
        self.provider.exchange_calls.append(code)
        verifier = await self.storage.get_item(VERIFIER_KEY)
        if self.provider.exchange_error is not None:
            raise self.provider.exchange_error
        if code not in self.provider.valid_codes or not verifier:
            raise FakeProviderError("invalid flow state, no valid flow state found")
        self.provider.valid_codes.discard(code)

        data = make_session(self.provider.user_id, self.provider.email)
        await self.storage.remove_item(VERIFIER_KEY)
        await self._save(data)
        session = as_session(data)
        self._notify("SIGNED_IN", session)
        return SimpleNamespace(user=session.user, session=session)

    async def get_session(self):
        raw = await self.storage.get_item(STORAGE_KEY)
        if raw is None:
            return None
        data = json.loads(raw)
        if data["expires_at"] <= time.time():
            if not self.provider.refresh_allowed:
                raise FakeProviderError("Invalid Refresh Token: Refresh Token Not Found")
            data = make_session(data["user"]["id"], data["user"]["email"])
            await self._save(data)
            self._notify("TOKEN_REFRESHED", as_session(data))
        return as_session(data)

    async def sign_in_with_password(self, credentials):
        if credentials["email"] != self.provider.email or credentials["password"] != self.provider.password:
            raise FakeProviderError("Invalid login credentials")
        data = make_session(self.provider.user_id, self.provider.email)
        await self._save(data)
        session = as_session(data)
        self._notify("SIGNED_IN", session)
        return SimpleNamespace(user=session.user, session=session)

    async def sign_up(self, credentials):
        if credentials["email"] == self.provider.email:
            raise FakeProviderError("User already registered")
        user = SimpleNamespace(id=str(uuid.uuid4()), email=credentials["email"])
        return SimpleNamespace(user=user, session=None)

    async def sign_out(self):
        self.provider.sign_out_calls += 1
        await self.storage.remove_item(STORAGE_KEY)
        self._notify("SIGNED_OUT", None)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def hub():
    return SessionEventHub()


@pytest.fixture
def override_dependencies(provider, hub):
    app.dependency_overrides[get_auth_client_factory] = lambda: (lambda bridge: FakeAuthClient(bridge, provider))
    app.dependency_overrides[get_event_hub] = lambda: hub
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(override_dependencies):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
def signed_in_cookies(provider):
    """Session cookie as the browser would hold it after signing in."""
    return {STORAGE_KEY: encode_cookie_value(json.dumps(make_session(provider.user_id, provider.email)))}

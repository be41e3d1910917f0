# src/presskit_auth/auth_utils.py

import logging
import typing

import httpx
from fastapi import HTTPException, status
from jose import JWTError, jwt
from supabase_auth import AsyncGoTrueClient
from supabase_auth.errors import AuthError

from .config import settings
from .cookie_bridge import CookieBridge, CookieSessionStorage
from .session_data import SessionUser
from .session_events import SessionEventHub, parse_session_event

logger = logging.getLogger(__name__)

MISSING_CODE_MESSAGE = "Missing auth code"


class AuthFlowError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MissingCodeError(AuthFlowError):
    def __init__(self):
        super().__init__(MISSING_CODE_MESSAGE)


class ExchangeFailedError(AuthFlowError):
    pass


# --- Supabase Auth client, one per request ---

def auth_cookie_options() -> dict:
    # Not HttpOnly: the browser SDK reads the same session cookies.
    options = {
        "path": "/",
        "max_age": settings.AUTH_COOKIE_MAX_AGE,
        "httponly": False,
        "secure": settings.AUTH_COOKIE_SECURE,
        "samesite": settings.AUTH_COOKIE_SAMESITE,
    }
    if settings.AUTH_COOKIE_DOMAIN:
        options["domain"] = settings.AUTH_COOKIE_DOMAIN
    return options


def build_auth_client(bridge: CookieBridge, http_client: typing.Optional[httpx.AsyncClient] = None) -> AsyncGoTrueClient:
    """
    Builds a PKCE auth client whose session storage is the request's cookies.
    Anything the client persists lands in `bridge` and must be flushed onto
    the response. The client owns an HTTP connection pool, so use it as
    `async with build_auth_client(bridge) as client:` to close it.
    """
    return AsyncGoTrueClient(
        url=settings.SUPABASE_AUTH_URL,
        headers={
            "apiKey": settings.SUPABASE_ANON_KEY,
            "Authorization": f"Bearer {settings.SUPABASE_ANON_KEY}",
        },
        storage_key=settings.AUTH_STORAGE_KEY,
        storage=CookieSessionStorage(bridge, auth_cookie_options()),
        auto_refresh_token=False,
        persist_session=True,
        flow_type="pkce",
        http_client=http_client,
    )


class SessionEventRelay:
    """
    Forwards the auth client's state changes for the duration of a request
    to the process-wide hub. SIGNED_OUT carries no session, so the caller
    supplies the user id it already knows.
    """

    def __init__(self, client, hub: SessionEventHub, user_id: typing.Optional[str] = None):
        self.client = client
        self.hub = hub
        self.user_id = user_id
        self._subscription = None

    def _forward(self, event_name: str, session) -> None:
        event = parse_session_event(event_name)
        if event is None:
            return
        user = getattr(session, "user", None) if session is not None else None
        user_id = user.id if user is not None else self.user_id
        if user_id is None:
            logger.debug(f"[AUTH_UTILS] {event.value} without a known user, not relayed")
            return
        self.hub.publish(user_id, event)

    def __enter__(self) -> "SessionEventRelay":
        self._subscription = self.client.on_auth_state_change(self._forward)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None


# --- Code exchange ---

async def exchange_code_for_session(client, code: typing.Optional[str]):
    """
    Trades a one-time authorization code for a session. Single attempt: the
    code is spent either way, so nothing is retried. Any failure, returned or
    raised, comes back as ExchangeFailedError.
    """
    if not code:
        raise MissingCodeError()

    try:
        result = await client.exchange_code_for_session({"auth_code": code})
    except AuthError as e:
        logger.warning(f"[AUTH_UTILS] exchange_code_for_session - provider rejected code: {e.message}")
        raise ExchangeFailedError(e.message) from e
    except Exception as e:
        logger.exception("[AUTH_UTILS] exchange_code_for_session - exchange call failed")
        raise ExchangeFailedError(str(e) or "Authentication failed") from e

    if result is None or getattr(result, "session", None) is None:
        raise ExchangeFailedError("Authentication failed")

    logger.info(f"[AUTH_UTILS] exchange_code_for_session - session established for user {result.user.id}")
    return result


# --- Access token verification ---

JWKS_CACHE: typing.Dict[str, typing.Dict] = {}


async def get_jwks() -> typing.Dict:
    if not JWKS_CACHE.get(settings.JWKS_URI):
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                response = await client.get(settings.JWKS_URI)
                response.raise_for_status()
                JWKS_CACHE[settings.JWKS_URI] = response.json()
        except httpx.HTTPError as e:
            logger.error(f"[AUTH_UTILS] Error fetching JWKS: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not retrieve signing keys for session token.",
            )
    return JWKS_CACHE[settings.JWKS_URI]


async def get_signing_key(token: str) -> typing.Tuple[typing.Union[str, typing.Dict], typing.List[str]]:
    if settings.SUPABASE_JWT_SECRET:
        return settings.SUPABASE_JWT_SECRET, ["HS256"]

    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid session token header: {str(e)}",
        )

    jwks = await get_jwks()
    for key in jwks.get("keys", []):
        if key.get("kid") == unverified_header.get("kid"):
            return key, [key.get("alg") or unverified_header.get("alg", "RS256")]

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Unable to find signing key for session token (kid: {unverified_header.get('kid')})",
    )


async def verify_access_token(token: str) -> SessionUser:
    signing_key, algorithms = await get_signing_key(token)
    try:
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=algorithms,
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.info(f"[AUTH_UTILS] session token rejected: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate session token",
        ) from e
    return SessionUser(**payload)


async def get_session_user(client) -> typing.Optional[SessionUser]:
    """
    Reads the session from the request's cookies, refreshing it through the
    provider when the access token has expired (the refreshed cookies land in
    the client's bridge). Returns None when there is no usable session.
    """
    try:
        session = await client.get_session()
    except AuthError as e:
        logger.info(f"[AUTH_UTILS] stored session could not be refreshed: {e.message}")
        return None

    if session is None or not session.access_token:
        return None
    return await verify_access_token(session.access_token)

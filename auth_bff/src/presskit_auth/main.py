# src/presskit_auth/main.py

import asyncio
import json
import logging
import typing
from urllib.parse import quote

from fastapi import FastAPI, Depends, Query, Request, HTTPException, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from supabase_auth.errors import AuthError

from .config import settings, CONFIG_FILE_DIR
from .logging_config import setup_logging
from . import auth_utils
from .auth_errors import friendly_auth_error
from .cookie_bridge import CookieBridge
from .redirects import safe_next_path
from .session_data import LoginRequest, SessionUser, SignupRequest
from .session_events import SessionEventHub, SessionStateEvent, session_event_hub
from .session_observer import SessionObserver

setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)

AuthClientFactory = typing.Callable[[CookieBridge], typing.Any]

# --- FastAPI App Setup ---
app = FastAPI(
    title="PressKit Auth BFF",
    description="Backend-For-Frontend handling sign-in, the PKCE code exchange and session cookies "
                "for the press-kit dashboard.",
    version="0.1.0"
)

templates = Jinja2Templates(directory=CONFIG_FILE_DIR / "templates")


# --- Dependencies (overridden in tests) ---
def get_auth_client_factory() -> AuthClientFactory:
    return auth_utils.build_auth_client


def get_event_hub() -> SessionEventHub:
    return session_event_hub


def login_redirect(message: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{settings.LOGIN_PATH}?error={quote(message, safe='')}",
        status_code=status.HTTP_302_FOUND,
    )


async def current_user_or_none(client) -> typing.Optional[SessionUser]:
    try:
        return await auth_utils.get_session_user(client)
    except HTTPException as e:
        if e.status_code != status.HTTP_401_UNAUTHORIZED:
            raise
        return None


# --- Authentication Routes ---
@app.get("/auth/callback")
@app.get("/api/auth/callback")
async def auth_callback(
        request: Request,
        code: typing.Optional[str] = None,
        next_path: typing.Optional[str] = Query(None, alias="next"),
        client_factory: AuthClientFactory = Depends(get_auth_client_factory),
        hub: SessionEventHub = Depends(get_event_hub),
):
    # Decide the destination before touching the code
    redirect_path = safe_next_path(next_path, settings.DEFAULT_REDIRECT_PATH)
    logger.info(f"[MAIN] /auth/callback entered. Code present: {bool(code)}, redirect target: {redirect_path}")

    bridge = CookieBridge.from_request(request)
    try:
        if not code:
            raise auth_utils.MissingCodeError()
        async with client_factory(bridge) as client:
            with auth_utils.SessionEventRelay(client, hub):
                await auth_utils.exchange_code_for_session(client, code)
    except auth_utils.AuthFlowError as e:
        logger.info(f"[MAIN] /auth/callback failed ({type(e).__name__}): {e.message}")
        # Nothing from a failed exchange reaches the browser
        bridge.discard()
        return login_redirect(e.message)

    logger.info(f"[MAIN] /auth/callback successful. Redirecting to: {redirect_path}")
    return bridge.flush(RedirectResponse(url=redirect_path, status_code=status.HTTP_302_FOUND))


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, error: typing.Optional[str] = None):
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error": friendly_auth_error(error) if error else None},
    )


@app.post("/api/auth/login")
async def login(
        request: Request,
        credentials: LoginRequest,
        client_factory: AuthClientFactory = Depends(get_auth_client_factory),
        hub: SessionEventHub = Depends(get_event_hub),
):
    bridge = CookieBridge.from_request(request)
    try:
        async with client_factory(bridge) as client:
            with auth_utils.SessionEventRelay(client, hub):
                result = await client.sign_in_with_password(
                    {"email": credentials.email, "password": credentials.password}
                )
    except AuthError as e:
        logger.info(f"[MAIN] /api/auth/login rejected: {e.message}")
        return JSONResponse({"error": friendly_auth_error(e.message)}, status_code=status.HTTP_400_BAD_REQUEST)

    logger.info(f"[MAIN] /api/auth/login - User {result.user.id} signed in")
    return bridge.flush(JSONResponse({"user": {"id": result.user.id, "email": result.user.email}}))


@app.post("/api/auth/signup")
async def signup(
        request: Request,
        details: SignupRequest,
        client_factory: AuthClientFactory = Depends(get_auth_client_factory),
        hub: SessionEventHub = Depends(get_event_hub),
):
    bridge = CookieBridge.from_request(request)
    try:
        async with client_factory(bridge) as client:
            with auth_utils.SessionEventRelay(client, hub):
                result = await client.sign_up({
                    "email": details.email,
                    "password": details.password,
                    "options": {"data": {"display_name": details.display_name}},
                })
    except AuthError as e:
        logger.info(f"[MAIN] /api/auth/signup rejected: {e.message}")
        return JSONResponse({"error": friendly_auth_error(e.message)}, status_code=status.HTTP_400_BAD_REQUEST)

    if result.user is None:
        return JSONResponse({"error": "Failed to create account"}, status_code=status.HTTP_400_BAD_REQUEST)

    # With e-mail confirmation enabled there is no session yet, only the user
    logger.info(f"[MAIN] /api/auth/signup - User {result.user.id} created. Session issued: {result.session is not None}")
    return bridge.flush(JSONResponse({"user": {"id": result.user.id, "email": result.user.email}}))


@app.post("/api/auth/logout")
async def logout(
        request: Request,
        client_factory: AuthClientFactory = Depends(get_auth_client_factory),
        hub: SessionEventHub = Depends(get_event_hub),
):
    bridge = CookieBridge.from_request(request)
    async with client_factory(bridge) as client:
        user = await current_user_or_none(client)
        logger.info(f"[MAIN] /api/auth/logout route hit. User before logout: {user.sub if user else 'Not in session'}")

        with auth_utils.SessionEventRelay(client, hub, user_id=user.sub if user else None):
            await client.sign_out()

    return bridge.flush(JSONResponse({"success": True}))


@app.get("/api/auth/user")
async def get_user_info(
        request: Request,
        client_factory: AuthClientFactory = Depends(get_auth_client_factory),
        hub: SessionEventHub = Depends(get_event_hub),
):
    bridge = CookieBridge.from_request(request)
    # A refresh here rewrites the session cookies and is relayed as TOKEN_REFRESHED
    async with client_factory(bridge) as client:
        with auth_utils.SessionEventRelay(client, hub):
            user = await current_user_or_none(client)

    body = {"user": user.model_dump() if user else None}
    return bridge.flush(JSONResponse(body))


@app.get("/api/auth/events")
async def session_events(
        request: Request,
        client_factory: AuthClientFactory = Depends(get_auth_client_factory),
        hub: SessionEventHub = Depends(get_event_hub),
):
    """
    Server-Sent Events stream for one open dashboard tab. Every session state
    change of the user arrives as a `session` event. When the user signs out
    anywhere, the tab receives a `navigate` event pointing at the login page
    and the stream ends.
    """
    bridge = CookieBridge.from_request(request)
    async with client_factory(bridge) as client:
        with auth_utils.SessionEventRelay(client, hub):
            user = await current_user_or_none(client)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    keepalive = settings.SESSION_EVENTS_KEEPALIVE_SECONDS

    async def event_stream():
        # Single consumer: (SSE event name, payload) pairs in delivery order
        frames: asyncio.Queue = asyncio.Queue()
        channel = hub.channel(user.sub)

        def forward(event: SessionStateEvent) -> None:
            frames.put_nowait(("session", {"event": event.value}))

        # Subscribed before the observer, so a sign-out is forwarded ahead of its navigation
        forwarding = channel.on_session_state_change(forward)
        observer = SessionObserver(
            navigate=lambda location: frames.put_nowait(("navigate", {"location": location})),
            login_url=settings.LOGIN_PATH,
        )
        observer.attach(channel.on_session_state_change)
        # The tab opened with a live session
        forward(SessionStateEvent.SIGNED_IN)
        observer.handle(SessionStateEvent.SIGNED_IN)
        logger.info(f"[MAIN] /api/auth/events - stream opened for user {user.sub}")
        try:
            yield ": connected\n\n"
            while True:
                try:
                    name, payload = await asyncio.wait_for(frames.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: {name}\ndata: {json.dumps(payload)}\n\n"
                if name == "navigate":
                    break
        finally:
            observer.detach()
            forwarding.unsubscribe()
            logger.info(f"[MAIN] /api/auth/events - stream closed for user {user.sub}")

    response = StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
    return bridge.flush(response)


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


# --- Startup Event ---
@app.on_event("startup")
async def startup_event():
    logger.info("[STARTUP] --- PressKit Auth BFF (FastAPI) Starting Up ---")
    logger.info(f"[STARTUP] Supabase Auth URL: {settings.SUPABASE_AUTH_URL}")
    logger.info(f"[STARTUP] Auth cookie: {settings.AUTH_STORAGE_KEY} (secure={settings.AUTH_COOKIE_SECURE})")
    logger.info(f"[STARTUP] Token verification: {'HS256 secret' if settings.SUPABASE_JWT_SECRET else 'JWKS ' + settings.JWKS_URI}")
    logger.info(f"[STARTUP] Default post-login path: {settings.DEFAULT_REDIRECT_PATH}")
    logger.info("[STARTUP] -------------------------------------------")

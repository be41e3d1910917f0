# src/presskit_auth/cookie_bridge.py

import base64
import binascii
import json
import logging
import re
import typing
from urllib.parse import quote, unquote

from starlette.requests import Request
from starlette.responses import Response
from supabase_auth import AsyncSupportedStorage

logger = logging.getLogger(__name__)

# Keyword arguments understood by Response.set_cookie / delete_cookie.
SET_COOKIE_OPTIONS = ("max_age", "expires", "path", "domain", "secure", "httponly", "samesite")
DELETE_COOKIE_OPTIONS = ("path", "domain", "secure", "httponly", "samesite")

# RFC 6265 cookie-octets that SimpleCookie emits without quoting; everything
# else (including "%") is percent-encoded on write.
_COOKIE_SAFE_CHARS = "!#$&'*+-.^_`|~:"


class CookieBridge:
    """
    Adapts a request's cookies and an outgoing response to the
    list-of-{name, value, options} shape the auth client works with.

    Writes are buffered until `flush` so the caller decides which response
    carries them. Buffered writes are keyed by (name, path, domain) and
    `read_all` sees them, so a value set earlier in the request reads back.
    """

    def __init__(self, request_cookies: typing.Mapping[str, str]):
        self._incoming = dict(request_cookies)
        self._pending: typing.Dict[typing.Tuple[str, str, typing.Optional[str]], dict] = {}

    @classmethod
    def from_request(cls, request: Request) -> "CookieBridge":
        return cls(request.cookies)

    def read_all(self) -> typing.List[typing.Dict[str, str]]:
        jar = {name: unquote(value) for name, value in self._incoming.items()}
        for cookie in self._pending.values():
            if cookie["value"] == "":
                jar.pop(cookie["name"], None)
            else:
                jar[cookie["name"]] = cookie["value"]
        return [{"name": name, "value": value} for name, value in jar.items()]

    def write_all(self, cookies: typing.Iterable[typing.Mapping[str, typing.Any]]) -> None:
        for cookie in cookies:
            options = dict(cookie.get("options") or {})
            key = (cookie["name"], options.get("path", "/"), options.get("domain"))
            self._pending[key] = {"name": cookie["name"], "value": cookie["value"], "options": options}

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._pending)

    def discard(self) -> None:
        self._pending.clear()

    def flush(self, response: Response) -> Response:
        for cookie in self._pending.values():
            options = cookie["options"]
            if cookie["value"] == "":
                response.delete_cookie(
                    cookie["name"],
                    **{k: v for k, v in options.items() if k in DELETE_COOKIE_OPTIONS},
                )
            else:
                response.set_cookie(
                    cookie["name"],
                    quote(cookie["value"], safe=_COOKIE_SAFE_CHARS),
                    **{k: v for k, v in options.items() if k in SET_COOKIE_OPTIONS},
                )
        logger.debug(f"[COOKIE_BRIDGE] flushed {len(self._pending)} cookie write(s)")
        self._pending.clear()
        return response


# --- Auth client storage on top of the bridge ---

BASE64_PREFIX = "base64-"
MAX_CHUNK_SIZE = 3180
CODE_VERIFIER_SUFFIX = "-code-verifier"


def encode_cookie_value(value: str) -> str:
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{BASE64_PREFIX}{encoded}"


def decode_cookie_value(raw: str) -> typing.Optional[str]:
    if not raw.startswith(BASE64_PREFIX):
        return raw
    payload = raw[len(BASE64_PREFIX):]
    try:
        return base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        logger.warning("[COOKIE_BRIDGE] undecodable auth cookie value, treating as absent")
        return None


def normalise_code_verifier(value: str) -> str:
    """
    The browser SDK stores the verifier JSON-encoded and may append
    "/<redirect type>" (e.g. "/PASSWORD_RECOVERY").
    """
    if value.startswith('"'):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass
    return value.split("/", 1)[0]


def split_into_chunks(key: str, value: str) -> typing.List[typing.Tuple[str, str]]:
    if len(value) <= MAX_CHUNK_SIZE:
        return [(key, value)]
    return [
        (f"{key}.{index}", value[offset:offset + MAX_CHUNK_SIZE])
        for index, offset in enumerate(range(0, len(value), MAX_CHUNK_SIZE))
    ]


class CookieSessionStorage(AsyncSupportedStorage):
    """
    Storage for the Supabase auth client that keeps the session and the PKCE
    code verifier in cookies, in the same encoding and chunk layout as the
    browser SDK.
    """

    def __init__(self, bridge: CookieBridge, cookie_options: typing.Mapping[str, typing.Any]):
        self.bridge = bridge
        self.cookie_options = dict(cookie_options)

    def _jar(self) -> typing.Dict[str, str]:
        return {cookie["name"]: cookie["value"] for cookie in self.bridge.read_all()}

    def _existing_names(self, key: str) -> typing.List[str]:
        chunk_name = re.compile(rf"^{re.escape(key)}\.\d+$")
        return [name for name in self._jar() if name == key or chunk_name.match(name)]

    def _deletion(self, name: str) -> dict:
        return {"name": name, "value": "", "options": self.cookie_options}

    async def get_item(self, key: str) -> typing.Optional[str]:
        jar = self._jar()
        raw = jar.get(key)
        if raw is None:
            parts = []
            while f"{key}.{len(parts)}" in jar:
                parts.append(jar[f"{key}.{len(parts)}"])
            if not parts:
                return None
            raw = "".join(parts)

        value = decode_cookie_value(raw)
        if value is not None and key.endswith(CODE_VERIFIER_SUFFIX):
            value = normalise_code_verifier(value)
        return value

    async def set_item(self, key: str, value: str) -> None:
        chunks = split_into_chunks(key, encode_cookie_value(value))
        written = {name for name, _ in chunks}
        stale = [name for name in self._existing_names(key) if name not in written]

        self.bridge.write_all(
            [self._deletion(name) for name in stale]
            + [{"name": name, "value": chunk, "options": self.cookie_options} for name, chunk in chunks]
        )
        logger.debug(f"[COOKIE_BRIDGE] stored {key} in {len(chunks)} cookie(s)")

    async def remove_item(self, key: str) -> None:
        names = set(self._existing_names(key)) | {key}
        self.bridge.write_all([self._deletion(name) for name in sorted(names)])

# src/presskit_auth/redirects.py

import logging
import re
import typing

logger = logging.getLogger(__name__)

DEFAULT_NEXT_PATH = "/dashboard"

# A same-origin path: one leading slash, not followed by another slash or a
# backslash (browsers read "/\host" the same as "//host").
_SAFE_PATH = re.compile(r"^/[^/\\]")


def safe_next_path(candidate: typing.Optional[str], default: str = DEFAULT_NEXT_PATH) -> str:
    """
    Returns `candidate` when it is a bare relative path, otherwise `default`.
    Never raises; an unsafe target is replaced, not reported.
    """
    if isinstance(candidate, str) and _SAFE_PATH.match(candidate):
        return candidate
    if candidate:
        logger.debug(f"[REDIRECTS] rejected post-auth target, falling back to {default}")
    return default

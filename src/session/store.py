"""Session file persistence.

File format (JSON object)::

    {"cookies": {"name": "value", ...}, "csrfToken": "...", "orgIds": [...]}
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from src.core.errors import SessionMissing
from src.session.state import SessionState

logger = logging.getLogger(__name__)


def load_session(path: str | Path, auth_cookie_names: list[str]) -> SessionState:
    """Load the session file and check that it proves a login.

    Raises:
        SessionMissing: file absent, unreadable, or without any auth cookie.
    """
    session = _read_session_file(Path(path))
    if session is None:
        msg = f"No session found at {path}. Run 'auth' or 'auth-cookie' first."
        raise SessionMissing(msg)
    if not session.has_auth_cookie(auth_cookie_names):
        msg = (
            f"Session at {path} has no authentication cookie "
            f"({', '.join(auth_cookie_names)}). Run 'auth' again."
        )
        raise SessionMissing(msg)
    logger.info("Loaded session from %s (%d cookies)", path, len(session.cookies))
    return session


def save_session(session: SessionState, path: str | Path) -> Path:
    """Write the session file, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = session.model_dump(by_alias=True)
    path.write_text(json.dumps(data, indent=2))
    logger.info("Saved session to %s", path)
    return path


def session_from_cookie_header(header: str) -> SessionState:
    """Build a session from a pasted ``Cookie:`` header or document.cookie."""
    cookies: dict[str, str] = {}
    for part in header.split(";"):
        pair = part.strip()
        if "=" not in pair:
            continue
        name, _, value = pair.partition("=")
        name, value = name.strip(), value.strip()
        if name and value:
            cookies[name] = value
    if not cookies:
        msg = "Cookie header contained no name=value pairs"
        raise ValueError(msg)
    return SessionState(cookies=cookies, csrf_token=cookies.get("csrf"))


def session_from_browser_cookies(cookies: list[dict[str, Any]]) -> SessionState:
    """Build a session from a browser context's cookie list."""
    cookie_map = {
        str(c["name"]): str(c["value"])
        for c in cookies
        if c.get("name") and c.get("value")
    }
    return SessionState(cookies=cookie_map, csrf_token=cookie_map.get("csrf"))


def _read_session_file(path: Path) -> SessionState | None:
    """Parse the session file. Returns None on any failure."""
    if not path.exists():
        logger.debug("Session file not found: %s", path)
        return None
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read session from %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Session file is not a JSON object: %s", path)
        return None
    try:
        return SessionState.model_validate(data)
    except ValidationError as e:
        logger.warning("Session file %s has an unexpected shape: %s", path, e)
        return None

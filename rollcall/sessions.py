"""tmux session registry, the ground truth for "is this agent alive"."""

import asyncio
import logging
import subprocess

from rollcall.config import DEFAULT_SESSION_TIMEOUT

logger = logging.getLogger(__name__)


class SessionRegistryError(RuntimeError):
    """tmux could not be queried."""


_NO_SERVER_MARKERS = ("no server running", "no sessions", "error connecting to")


def _list_sessions_sync(timeout: float) -> set[str]:
    try:
        result = subprocess.run(
            ["tmux", "list-sessions", "-F", "#{session_name}"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise SessionRegistryError(f"tmux list-sessions timed out after {timeout:g}s")
    except OSError as e:
        raise SessionRegistryError(f"tmux unavailable: {e}")

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        # A missing server or socket just means nothing is running.
        if any(marker in stderr.lower() for marker in _NO_SERVER_MARKERS):
            return set()
        raise SessionRegistryError(stderr or f"tmux exited with code {result.returncode}")

    return {line.strip() for line in (result.stdout or "").splitlines() if line.strip()}


async def list_sessions(timeout: float = DEFAULT_SESSION_TIMEOUT) -> set[str]:
    """Return the names of all live tmux sessions.

    Raises ``SessionRegistryError`` when tmux fails for any reason other
    than having no server.
    """
    return await asyncio.to_thread(_list_sessions_sync, timeout)

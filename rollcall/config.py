"""Operator configuration and the resolved town context.

Operator settings live in ``~/.rollcall/config.yaml``::

    town_root: /home/me/gt        # optional, otherwise detected
    extra_rigs:                   # rigs outside mayor/rigs.json
      - /home/me/side-project
    operator: overseer            # mailbox always counted in the mail index
    bd_timeout: 30                # seconds, per tracker call
    session_timeout: 5            # seconds, tmux lookup
    git_timeout: 5                # seconds, branch lookup
    log_level: info               # rollcall.* loggers; -v forces debug

``resolve_context()`` folds those settings, the ``GT_TOWN_ROOT`` /
``GT_EXTRA_RIGS`` environment variables and town-root detection into one
immutable ``TownContext``.  It is resolved once at process start and handed
to every call that needs it.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from rollcall.paths import config_path, mayor_dir, rigs_config_path, town_config_path

logger = logging.getLogger(__name__)

DEFAULT_OPERATOR = "overseer"
DEFAULT_BD_TIMEOUT = 30.0
DEFAULT_SESSION_TIMEOUT = 5.0
DEFAULT_GIT_TIMEOUT = 5.0

SETTING_KEYS = (
    "town_root", "extra_rigs", "operator",
    "bd_timeout", "session_timeout", "git_timeout", "log_level",
)


class TownRootNotFound(RuntimeError):
    """No town root configured and none found above the working directory."""


def _read(rc_home: Path) -> dict:
    """Read config.yaml, returning empty dict if missing."""
    cp = config_path(rc_home)
    if cp.exists():
        return yaml.safe_load(cp.read_text()) or {}
    return {}


def _write(rc_home: Path, data: dict) -> None:
    """Write config.yaml (creates parent dirs if needed)."""
    cp = config_path(rc_home)
    cp.parent.mkdir(parents=True, exist_ok=True)
    cp.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))


def get_setting(rc_home: Path, key: str, default=None):
    """Return a single config value, or *default* if unset."""
    value = _read(rc_home).get(key)
    return default if value is None else value


def set_setting(rc_home: Path, key: str, value) -> None:
    """Set a single config value."""
    data = _read(rc_home)
    data[key] = value
    _write(rc_home, data)


# ---------------------------------------------------------------------------
# Town context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TownContext:
    """Everything a reconciliation pass needs to know about its environment."""

    root: Path
    cwd: Path
    extra_rigs: tuple[Path, ...] = ()
    operator: str = DEFAULT_OPERATOR
    bd_timeout: float = DEFAULT_BD_TIMEOUT
    session_timeout: float = DEFAULT_SESSION_TIMEOUT
    git_timeout: float = DEFAULT_GIT_TIMEOUT


def _is_in_worktree(path: Path) -> bool:
    return "polecats" in path.parts or "crew" in path.parts


def find_town_root(start: Path) -> Path | None:
    """Walk upward from *start* looking for a town root.

    A directory holding ``mayor/town.json`` is a primary match; one that
    merely holds ``mayor/`` is a fallback.  Outside agent worktrees the
    nearest primary match wins.  Inside a ``polecats/`` or ``crew/``
    worktree the outermost primary match wins, because a rig checkout can
    itself contain a ``mayor/`` directory.
    """
    current = start.resolve()
    in_worktree = _is_in_worktree(current)
    primary: Path | None = None
    secondary: Path | None = None

    for candidate in (current, *current.parents):
        if town_config_path(candidate).is_file():
            if not in_worktree:
                return candidate
            primary = candidate
        if secondary is None and mayor_dir(candidate).is_dir():
            secondary = candidate

    return primary or secondary


def _split_extra_rigs(value) -> list[str]:
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    return [str(p).strip() for p in value or [] if str(p).strip()]


def resolve_context(
    rc_home: Path,
    town_root: Path | None = None,
    cwd: Path | None = None,
) -> TownContext:
    """Resolve the town context once.

    Town root resolution order:
    1. *town_root* argument (CLI ``--town-root``)
    2. ``GT_TOWN_ROOT`` environment variable
    3. ``town_root`` in config.yaml
    4. upward search from *cwd* (see ``find_town_root``)

    Raises ``TownRootNotFound`` if none of these yields a directory.
    """
    settings = _read(rc_home)
    cwd = (cwd or Path.cwd()).resolve()

    root: Path | None = town_root
    if root is None and os.environ.get("GT_TOWN_ROOT"):
        root = Path(os.environ["GT_TOWN_ROOT"])
    if root is None and settings.get("town_root"):
        root = Path(settings["town_root"]).expanduser()
    if root is None:
        root = find_town_root(cwd)
    if root is None:
        raise TownRootNotFound(
            "Could not determine town root. Set GT_TOWN_ROOT or run from within a town."
        )

    env_rigs = os.environ.get("GT_EXTRA_RIGS")
    raw_rigs = _split_extra_rigs(env_rigs) if env_rigs else _split_extra_rigs(settings.get("extra_rigs"))
    extra_rigs = tuple((cwd / Path(p).expanduser()).resolve() for p in raw_rigs)

    ctx = TownContext(
        root=root.resolve(),
        cwd=cwd,
        extra_rigs=extra_rigs,
        operator=settings.get("operator") or DEFAULT_OPERATOR,
        bd_timeout=float(settings.get("bd_timeout", DEFAULT_BD_TIMEOUT)),
        session_timeout=float(settings.get("session_timeout", DEFAULT_SESSION_TIMEOUT)),
        git_timeout=float(settings.get("git_timeout", DEFAULT_GIT_TIMEOUT)),
    )
    logger.info("Town root resolved to %s (%d extra rig(s))", ctx.root, len(ctx.extra_rigs))
    return ctx


# ---------------------------------------------------------------------------
# Town metadata (mayor/*.json)
# ---------------------------------------------------------------------------

def _read_json(path: Path) -> dict | None:
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def load_town_config(town_root: Path) -> dict:
    """Return ``mayor/town.json``, or ``{}`` if missing or unreadable."""
    return _read_json(town_config_path(town_root)) or {}


def load_rigs_config(town_root: Path) -> dict:
    """Return ``mayor/rigs.json``, or ``{"rigs": {}}`` if missing or unreadable."""
    data = _read_json(rigs_config_path(town_root))
    if data is None:
        logger.debug("No readable rigs.json under %s", town_root)
        return {"rigs": {}}
    return data


def list_rig_names(town_root: Path) -> list[str]:
    """Return configured rig names in file order."""
    rigs = load_rigs_config(town_root).get("rigs") or {}
    if not isinstance(rigs, dict):
        return []
    return list(rigs.keys())

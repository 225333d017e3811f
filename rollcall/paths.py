"""Centralized path computations for Rollcall.

Rollcall's own state (config + log) lives under a single home directory
(``~/.rollcall`` by default).  The ``ROLLCALL_HOME`` environment variable
overrides the default for testing.

Everything else is *read* from the town it reports on::

    <town>/
      .beads/                     # town tracker database (hq-* beads)
        redirect                  # optional: relative path to the real db
        routes.jsonl              # bead prefix -> rig path routing
      mayor/
        town.json                 # town metadata (name, owner)
        rigs.json                 # configured rigs
      <rig>/
        .beads/                   # rig tracker database
        polecats/<name>/<rig>/    # polecat git worktree
"""

import os
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".rollcall"


def home(override: Path | None = None) -> Path:
    """Return the Rollcall home directory.

    Resolution order:
    1. *override* argument (used in tests)
    2. ``ROLLCALL_HOME`` environment variable
    3. ``~/.rollcall``
    """
    if override is not None:
        return override
    env = os.environ.get("ROLLCALL_HOME")
    if env:
        return Path(env)
    return _DEFAULT_HOME


def config_path(rc_home: Path) -> Path:
    """Operator config: ``<home>/config.yaml``."""
    return rc_home / "config.yaml"


# =========================================================================
# Town layout (read-only)
# =========================================================================

def mayor_dir(town_root: Path) -> Path:
    return town_root / "mayor"


def town_config_path(town_root: Path) -> Path:
    """Town metadata: ``mayor/town.json``."""
    return mayor_dir(town_root) / "town.json"


def rigs_config_path(town_root: Path) -> Path:
    """Configured rigs: ``mayor/rigs.json``."""
    return mayor_dir(town_root) / "rigs.json"


def beads_marker(work_dir: Path) -> Path:
    """Tracker marker directory for a workspace: ``<work_dir>/.beads``."""
    return work_dir / ".beads"


def routes_path(town_root: Path) -> Path:
    """Bead prefix routing table: ``.beads/routes.jsonl``."""
    return beads_marker(town_root) / "routes.jsonl"


def polecat_worktree_path(town_root: Path, rig: str, name: str) -> Path:
    """Polecat git worktree: ``<rig>/polecats/<name>/<rig>/``."""
    return town_root / rig / "polecats" / name / rig

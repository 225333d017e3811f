"""Workspace discovery: which tracker databases describe this town's agents.

Sources are listed in priority order, because the reconciler keeps the
first record it sees for each agent identity:

1. the town root;
2. every rig in ``mayor/rigs.json``;
3. every extra rig path from ``GT_EXTRA_RIGS`` / config (a rig without its
   own ``.beads/`` is queried against the town database from the rig's
   directory);
4. the nearest directory holding ``.beads/`` above the working directory,
   which catches agents launched from a checkout the town does not know.

Each directory is queried at most once.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from rollcall.agent_beads import extract_bead_prefix
from rollcall.beads import BeadsClient, IssueRecord, TrackerError, resolve_beads_dir
from rollcall.config import TownContext, list_rig_names
from rollcall.paths import beads_marker, routes_path

logger = logging.getLogger(__name__)

AGENT_STATUSES = frozenset({"open", "tombstone"})
TOWN_PREFIX = "hq"


@dataclass(frozen=True)
class AgentSource:
    """One workspace directory to query, plus the rig its beads belong to."""

    work_dir: Path
    beads_dir: Path
    rig: str | None = None


@dataclass
class SourceResult:
    """Outcome of querying one source: issues on success, error on failure."""

    source: AgentSource
    issues: list[IssueRecord] = field(default_factory=list)
    error: TrackerError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def list_agent_sources(ctx: TownContext) -> list[AgentSource]:
    """Enumerate agent sources for *ctx* in priority order."""
    sources: list[AgentSource] = []
    seen: set[Path] = set()

    def add(work_dir: Path, rig: str | None, *, fallback_to_town: bool = False) -> bool:
        work_dir = work_dir.resolve()
        if work_dir in seen:
            return False
        if beads_marker(work_dir).is_dir():
            beads_dir = resolve_beads_dir(work_dir)
        elif fallback_to_town and beads_marker(ctx.root).is_dir():
            beads_dir = resolve_beads_dir(ctx.root)
        else:
            return False
        seen.add(work_dir)
        sources.append(AgentSource(work_dir=work_dir, beads_dir=beads_dir, rig=rig))
        return True

    add(ctx.root, None)

    for rig_name in list_rig_names(ctx.root):
        add(ctx.root / rig_name, rig_name)

    for rig_path in ctx.extra_rigs:
        add(rig_path, rig_path.name, fallback_to_town=True)

    for candidate in (ctx.cwd, *ctx.cwd.parents):
        if beads_marker(candidate).is_dir():
            add(candidate, candidate.name)
            break

    logger.debug("Discovered %d agent source(s): %s", len(sources), [str(s.work_dir) for s in sources])
    return sources


async def query_source(source: AgentSource, timeout: float) -> SourceResult:
    """Fetch agent beads from one source, capturing failure as a result."""
    client = BeadsClient(source.work_dir, source.beads_dir, timeout=timeout)
    try:
        issues = await client.list_issues("agent", all_statuses=True)
    except TrackerError as e:
        logger.warning(
            "Agent query failed | dir=%s | code=%s | %s", source.work_dir, e.code, e.message,
        )
        return SourceResult(source=source, error=e)
    relevant = [i for i in issues if i.status.lower() in AGENT_STATUSES]
    return SourceResult(source=source, issues=relevant)


async def query_sources(sources: list[AgentSource], timeout: float) -> list[SourceResult]:
    """Query every source concurrently; results keep the input order."""
    return list(await asyncio.gather(*(query_source(s, timeout) for s in sources)))


# ---------------------------------------------------------------------------
# Bead id -> database routing
# ---------------------------------------------------------------------------

def load_routes(town_root: Path) -> dict[str, str]:
    """Read ``.beads/routes.jsonl`` into ``{prefix: relative path}``.

    Prefixes are stored without their trailing ``-``.
    """
    path = routes_path(town_root)
    routes: dict[str, str] = {}
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return routes
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed route line: %r", line)
            continue
        if not isinstance(entry, dict):
            continue
        prefix = str(entry.get("prefix") or "").rstrip("-")
        target = entry.get("path")
        if prefix and target:
            routes[prefix] = str(target)
    return routes


def resolve_beads_dir_for_id(
    ctx: TownContext,
    bead_id: str,
    routes: dict[str, str] | None = None,
) -> tuple[Path, Path] | None:
    """Return ``(work_dir, beads_dir)`` for the database owning *bead_id*.

    ``hq-`` and unknown prefixes resolve to the town database.  A routed
    directory without ``.beads/`` resolves to None.
    """
    if routes is None:
        routes = load_routes(ctx.root)
    prefix = extract_bead_prefix(bead_id) or TOWN_PREFIX
    target = routes.get(prefix)
    if prefix == TOWN_PREFIX or target is None or target == ".":
        return ctx.root, resolve_beads_dir(ctx.root)

    work_dir = (ctx.root / target).resolve()
    if not beads_marker(work_dir).is_dir():
        return None
    return work_dir, resolve_beads_dir(work_dir)

"""Agent snapshot: the single artifact the API layer consumes.

``collect_agent_snapshot`` runs one full pass:

    sessions + workspace discovery
      -> concurrent agent queries (one per source)
      -> reconcile_agents
      -> one bulk mail query -> build_mail_index
      -> hook bead titles + polecat branches (concurrent, best effort)
      -> merged, name-sorted roster

Nothing is cached between calls.  Individual failures are logged and
collected in ``AgentSnapshot.errors``; only ``AggregateError`` escapes.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from rollcall.addresses import POLECAT
from rollcall.agent_beads import extract_bead_prefix
from rollcall.agents import AgentRecord, reconcile_agents
from rollcall.beads import BeadsClient, TrackerError
from rollcall.config import TownContext
from rollcall.mail import MailIndexEntry, build_mail_index, list_mail_issues
from rollcall.paths import polecat_worktree_path
from rollcall.sessions import SessionRegistryError, list_sessions
from rollcall.workspace import (
    TOWN_PREFIX,
    list_agent_sources,
    load_routes,
    query_sources,
    resolve_beads_dir_for_id,
)

logger = logging.getLogger(__name__)


@dataclass
class AgentSnapshot:
    agents: list[AgentRecord]
    mail_index: dict[str, MailIndexEntry]
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "agents": [a.to_dict() for a in self.agents],
            "mail_index": {k: v.to_dict() for k, v in self.mail_index.items()},
            "errors": list(self.errors),
        }


# ---------------------------------------------------------------------------
# Best-effort lookups
# ---------------------------------------------------------------------------

def current_branch(worktree: Path, timeout: float) -> str | None:
    """Checked-out branch of *worktree*, or None if it cannot be determined."""
    if not worktree.is_dir():
        return None
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=str(worktree),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug("Branch lookup failed for %s: %s", worktree, e)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


async def _polecat_branch(ctx: TownContext, agent: AgentRecord) -> str | None:
    worktree = polecat_worktree_path(ctx.root, agent.rig, agent.name)
    return await asyncio.to_thread(current_branch, worktree, ctx.git_timeout)


async def fetch_bead_titles(ctx: TownContext, bead_ids: Iterable[str]) -> dict[str, str]:
    """Titles for *bead_ids*, one ``bd show`` per owning database.

    Beads whose database cannot be resolved or queried are left out.
    """
    by_prefix: dict[str, list[str]] = {}
    for bead_id in dict.fromkeys(bead_ids):
        by_prefix.setdefault(extract_bead_prefix(bead_id) or TOWN_PREFIX, []).append(bead_id)
    if not by_prefix:
        return {}

    routes = await asyncio.to_thread(load_routes, ctx.root)

    async def fetch(ids: list[str]) -> dict[str, str]:
        location = await asyncio.to_thread(resolve_beads_dir_for_id, ctx, ids[0], routes)
        if location is None:
            return {}
        work_dir, beads_dir = location
        try:
            beads = await BeadsClient(work_dir, beads_dir, timeout=ctx.bd_timeout).show(ids)
        except TrackerError as e:
            logger.warning("Hook bead lookup failed | dir=%s | %s", work_dir, e.message)
            return {}
        return {b.id: b.title for b in beads if b.title}

    titles: dict[str, str] = {}
    for group in await asyncio.gather(*(fetch(ids) for ids in by_prefix.values())):
        titles.update(group)
    return titles


async def _live_sessions(ctx: TownContext, errors: list[str]) -> set[str]:
    try:
        return await list_sessions(ctx.session_timeout)
    except SessionRegistryError as e:
        logger.warning("Session registry unavailable: %s", e)
        errors.append(f"sessions: {e}")
        return set()


async def _mail_index(ctx: TownContext, identities: set[str], errors: list[str]) -> dict[str, MailIndexEntry]:
    try:
        issues = await list_mail_issues(ctx)
    except TrackerError as e:
        logger.warning("Mail query failed; unread counts will be zero: %s", e.message)
        errors.append(f"mail: {e.message}")
        issues = []
    return build_mail_index(issues, identities)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

async def collect_agent_snapshot(
    ctx: TownContext,
    extra_identities: Iterable[str] | None = None,
) -> AgentSnapshot:
    """Build a fresh ``AgentSnapshot`` for the town in *ctx*.

    The operator identity and *extra_identities* are seeded into the
    identity set: they get mail index entries but never roster entries.

    Raises ``AggregateError`` when every agent source failed and no agent
    could be found, not even from live sessions.
    """
    errors: list[str] = []
    sources = await asyncio.to_thread(list_agent_sources, ctx)
    sessions, results = await asyncio.gather(
        _live_sessions(ctx, errors),
        query_sources(sources, ctx.bd_timeout),
    )

    seeds = [ctx.operator, *(extra_identities or ())]
    reconciliation = reconcile_agents(results, sessions, seeds)
    errors += [f"{r.source.work_dir}: {r.error.message}" for r in results if not r.ok]
    agents = reconciliation.agents

    polecats = [a for a in agents if a.role == POLECAT and a.rig]
    mail_index, titles, branches = await asyncio.gather(
        _mail_index(ctx, reconciliation.identities, errors),
        fetch_bead_titles(ctx, [a.hook_bead for a in agents if a.hook_bead]),
        asyncio.gather(*(_polecat_branch(ctx, a) for a in polecats)),
    )

    for agent, branch in zip(polecats, branches):
        agent.branch = branch
    for agent in agents:
        entry = mail_index.get(agent.identity)
        if entry is not None:
            agent.unread_mail = entry.unread
            agent.first_subject = entry.first_subject
            agent.first_from = entry.first_from
        if agent.hook_bead:
            agent.hook_bead_title = titles.get(agent.hook_bead)

    agents.sort(key=lambda a: (a.name, a.address))
    logger.info(
        "Snapshot: %d agent(s), %d identity(ies), %d error(s)",
        len(agents), len(mail_index), len(errors),
    )
    return AgentSnapshot(agents=agents, mail_index=mail_index, errors=errors)

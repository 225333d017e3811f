"""Agent reconciliation: one roster from trackers and live sessions.

Agents are described by three unreliable sources: agent beads in several
tracker databases, the tmux session registry, and (for polecats) git
worktrees.  ``reconcile_agents`` merges the first two into a roster that
holds exactly one record per identity:

* tracker results are consumed in source priority order and the first
  record for an identity wins;
* ``running`` comes from the session registry, never from the tracker;
* live sessions that no tracked agent claimed are turned into
  ``SynthesizedAgent`` records, so a crash-recovered agent still shows up.

A source that failed contributes nothing.  Only when every source failed
and nothing at all was found is ``AggregateError`` raised.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import ClassVar, Iterable

from rollcall.addresses import (
    SINGLETON_ROLES,
    address_to_identity,
    build_agent_address,
    parse_session_name,
    session_name_for_agent,
)
from rollcall.agent_beads import normalize_role, parse_agent_bead_id, parse_agent_fields
from rollcall.beads import IssueRecord, TrackerError
from rollcall.workspace import SourceResult

logger = logging.getLogger(__name__)


class AggregateError(RuntimeError):
    """Every agent source failed and no agent could be found."""

    def __init__(self, errors: list[TrackerError]):
        message = errors[0].message if errors else "All agent sources failed"
        super().__init__(message)
        self.errors = errors


# ---------------------------------------------------------------------------
# Roster records
# ---------------------------------------------------------------------------

@dataclass(kw_only=True)
class AgentRecord(ABC):
    """Fields shared by tracked and synthesized agents."""

    source: ClassVar[str] = ""

    name: str
    role: str
    rig: str | None
    address: str
    session_name: str | None
    running: bool
    state: str | None = None
    hook_bead: str | None = None
    hook_bead_title: str | None = None
    unread_mail: int = 0
    first_subject: str | None = None
    first_from: str | None = None
    branch: str | None = None

    @property
    @abstractmethod
    def id(self) -> str:
        """Stable roster key: the bead id, or the address for synthesized agents."""

    @property
    def identity(self) -> str:
        return address_to_identity(self.address)

    def to_dict(self) -> dict:
        data = {"id": self.id, "source": self.source, **asdict(self)}
        data.pop("bead_id", None)
        return {k: v for k, v in data.items() if v is not None}


@dataclass(kw_only=True)
class TrackedAgent(AgentRecord):
    """An agent backed by an agent bead."""

    source: ClassVar[str] = "tracker"

    bead_id: str

    @property
    def id(self) -> str:
        return self.bead_id


@dataclass(kw_only=True)
class SynthesizedAgent(AgentRecord):
    """An agent known only from a live tmux session."""

    source: ClassVar[str] = "session"

    running: bool = True
    state: str | None = "running"

    @property
    def id(self) -> str:
        return self.address


@dataclass
class Reconciliation:
    agents: list[AgentRecord]
    identities: set[str]
    errors: list[TrackerError]


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def agent_from_issue(
    issue: IssueRecord,
    source_rig: str | None,
    sessions: set[str],
) -> TrackedAgent | None:
    """Build a roster record from one agent bead, or None if unusable."""
    parsed = parse_agent_bead_id(issue.id, source_rig)
    if parsed is None:
        logger.debug("Dropping agent bead with unparseable id %r", issue.id)
        return None

    fields = parse_agent_fields(issue.description)
    role = normalize_role(fields.role_type or parsed.role or "")
    if not role:
        return None

    rig = fields.rig or parsed.rig
    if parsed.name:
        name = parsed.name
    elif role in SINGLETON_ROLES:
        name = role
    else:
        name = issue.title or role

    address = build_agent_address(role, rig, name)
    if address is None:
        logger.debug("Dropping agent bead %r: no address for role=%s rig=%s", issue.id, role, rig)
        return None

    session_name = session_name_for_agent(role, rig, name)
    return TrackedAgent(
        bead_id=issue.id,
        name=name,
        role=role,
        rig=rig,
        address=address,
        session_name=session_name,
        running=session_name in sessions if session_name else False,
        state=issue.agent_state or fields.agent_state,
        hook_bead=issue.hook_bead or fields.hook_bead,
    )


def agent_from_session(session: str) -> SynthesizedAgent | None:
    """Build a roster record from a live session name, or None if foreign."""
    parsed = parse_session_name(session)
    if parsed is None:
        return None
    role, rig, name = parsed
    address = build_agent_address(role, rig, name)
    if address is None:
        return None
    return SynthesizedAgent(
        name=name,
        role=role,
        rig=rig,
        address=address,
        session_name=session,
    )


def reconcile_agents(
    results: list[SourceResult],
    sessions: set[str],
    seed_identities: Iterable[str] = (),
) -> Reconciliation:
    """Merge per-source agent beads and live sessions into one roster.

    *results* must be in source priority order.  *seed_identities* are
    identities that are already accounted for (e.g. the operator) and are
    never turned into roster entries, but are included in the returned
    identity set.
    """
    identities = {address_to_identity(s) for s in seed_identities}
    agents: list[AgentRecord] = []
    errors = [r.error for r in results if not r.ok]

    for result in results:
        for issue in result.issues:
            agent = agent_from_issue(issue, result.source.rig, sessions)
            if agent is None:
                continue
            identity = agent.identity
            if identity in identities:
                continue
            identities.add(identity)
            agents.append(agent)

    for session in sorted(sessions):
        agent = agent_from_session(session)
        if agent is None:
            continue
        identity = agent.identity
        if identity in identities:
            continue
        identities.add(identity)
        agents.append(agent)
        logger.debug("Synthesized %s from live session %s", agent.address, session)

    if results and len(errors) == len(results) and not agents:
        raise AggregateError(errors)

    if errors:
        logger.warning(
            "Reconciled %d agent(s) with %d of %d source(s) failing",
            len(agents), len(errors), len(results),
        )
    return Reconciliation(agents=agents, identities=identities, errors=errors)

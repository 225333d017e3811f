"""Parse agent beads into structured agent metadata.

Agent beads carry their identity twice: once in the bead id
(``gt-acme-crew-vin``) and once as ``key: value`` lines in the
description::

    role_type: crew
    rig: acme
    agent_state: working
    hook_bead: gt-4f2a

Either can be missing or stale; the reconciler prefers description fields
and falls back to the id.
"""

from dataclasses import dataclass

from rollcall.addresses import KNOWN_ROLES

_ROLE_ALIASES = {
    "coordinator": "mayor",
    "health-check": "deacon",
}


@dataclass(frozen=True)
class ParsedAgentBead:
    rig: str | None
    role: str
    name: str | None


@dataclass(frozen=True)
class AgentFields:
    role_type: str | None = None
    rig: str | None = None
    agent_state: str | None = None
    hook_bead: str | None = None


def extract_bead_prefix(bead_id: str) -> str | None:
    """Return the 2-3 character database prefix of a bead id, or None."""
    idx = bead_id.find("-")
    if idx < 2 or idx > 3:
        return None
    return bead_id[:idx]


def parse_agent_bead_id(bead_id: str, default_rig: str | None = None) -> ParsedAgentBead | None:
    """Split an agent bead id into ``(rig, role, name)``.

    The id is ``<prefix>-<rest>`` with a 2-3 character prefix.  ``rest``
    is read, in order of priority, as:

    * ``dog-<name>``: a town-level dog;
    * ``<role>[-<name>]`` when *default_rig* is given and the first part is a
      known role (rig-local databases omit the rig);
    * ``<role>`` / ``<rig>-<role>`` / ``<rig>-<role>-<name...>`` by arity.

    Returns None for a malformed prefix.
    """
    if extract_bead_prefix(bead_id) is None:
        return None
    parts = bead_id[bead_id.index("-") + 1:].split("-")

    if len(parts) >= 2 and parts[0].lower() == "dog":
        return ParsedAgentBead(rig=None, role="dog", name="-".join(parts[1:]))

    if default_rig and parts[0].lower() in KNOWN_ROLES:
        return ParsedAgentBead(
            rig=default_rig,
            role=parts[0],
            name="-".join(parts[1:]) if len(parts) > 1 else None,
        )

    if len(parts) == 1:
        return ParsedAgentBead(rig=None, role=parts[0], name=None)
    if len(parts) == 2:
        return ParsedAgentBead(rig=parts[0], role=parts[1], name=None)
    return ParsedAgentBead(rig=parts[0], role=parts[1], name="-".join(parts[2:]))


def parse_agent_fields(description: str | None) -> AgentFields:
    """Scan ``key: value`` lines for the four agent fields.

    Keys are case-insensitive.  A literal ``null`` or an empty value counts
    as absent; other keys and lines without a colon are ignored.
    """
    found: dict[str, str] = {}
    for raw_line in (description or "").splitlines():
        line = raw_line.strip()
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if not value or value == "null":
            continue
        if key in ("role_type", "rig", "agent_state", "hook_bead"):
            found[key] = value
    return AgentFields(**found)


def normalize_role(role: str) -> str:
    """Lowercase *role* and resolve legacy aliases."""
    lower = role.lower()
    return _ROLE_ALIASES.get(lower, lower)

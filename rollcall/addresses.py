"""Agent addresses, identities and tmux session names.

An *address* is the human-facing, path-like name of an agent mailbox::

    mayor/              town coordinator
    deacon/             town health check
    <rig>/witness       per-rig monitor
    <rig>/refinery      per-rig merge queue
    <rig>/crew/<name>   persistent worker
    <rig>/<name>        polecat (ephemeral worker)

An *identity* is the dedup key derived from an address: the ``crew/`` (or
``polecats/``) segment is collapsed, so ``acme/crew/vin`` and ``acme/vin``
are the same agent.

The inverse is lossy.  ``identity_to_address("acme/vin")`` cannot know
whether ``vin`` is crew or a polecat and returns ``acme/vin`` either way,
unless the caller passes the role it already knows.
"""

MAYOR = "mayor"
DEACON = "deacon"
WITNESS = "witness"
REFINERY = "refinery"
CREW = "crew"
POLECAT = "polecat"
OVERSEER = "overseer"

TOWN_SINGLETONS = (MAYOR, DEACON)
SINGLETON_ROLES = (MAYOR, DEACON, WITNESS, REFINERY)
KNOWN_ROLES = (MAYOR, DEACON, WITNESS, REFINERY, CREW, POLECAT)

_WORKER_SEGMENTS = ("crew", "polecats")


def _town_singleton(value: str) -> str | None:
    if value == OVERSEER:
        return OVERSEER
    for role in TOWN_SINGLETONS:
        if value in (role, f"{role}/"):
            return f"{role}/"
    return None


def address_to_identity(address: str) -> str:
    """Collapse an address to its identity."""
    special = _town_singleton(address)
    if special is not None:
        return special

    normalized = address[:-1] if address.endswith("/") else address
    parts = normalized.split("/")
    if len(parts) == 3 and parts[1] in _WORKER_SEGMENTS:
        return f"{parts[0]}/{parts[2]}"
    return normalized


def identity_to_address(identity: str, role: str | None = None) -> str:
    """Map an identity back to an address.

    Without *role* this returns the identity unchanged for rig agents, so a
    crew member comes back as ``<rig>/<name>``.  With ``role="crew"`` the
    ``crew/`` segment is rebuilt.
    """
    special = _town_singleton(identity)
    if special is not None:
        return special

    parts = identity.split("/")
    if len(parts) == 3 and parts[1] in _WORKER_SEGMENTS:
        return f"{parts[0]}/{parts[2]}"
    if role == CREW and len(parts) == 2 and parts[1] not in (WITNESS, REFINERY):
        return f"{parts[0]}/crew/{parts[1]}"
    return identity


def identity_variants(identity: str) -> list[str]:
    """Spellings of *identity* that tracker labels and assignees may use."""
    for role in TOWN_SINGLETONS:
        if identity == f"{role}/":
            return [f"{role}/", role]
    return [identity]


def build_agent_address(role: str, rig: str | None, name: str | None) -> str | None:
    """Build an agent's address, or None if *role* needs a missing rig/name."""
    if role in TOWN_SINGLETONS:
        return f"{role}/"
    if role in (WITNESS, REFINERY):
        return f"{rig}/{role}" if rig else None
    if role == CREW:
        return f"{rig}/crew/{name}" if rig and name else None
    if role == POLECAT:
        return f"{rig}/{name}" if rig and name else None
    return None


# ---------------------------------------------------------------------------
# tmux session names
# ---------------------------------------------------------------------------

def session_name_for_agent(role: str, rig: str | None, name: str | None) -> str | None:
    """Expected tmux session name for an agent, or None if underspecified."""
    if role in TOWN_SINGLETONS:
        return f"hq-{role}"
    if role in (WITNESS, REFINERY):
        return f"gt-{rig}-{role}" if rig else None
    if role == CREW:
        return f"gt-{rig}-crew-{name}" if rig and name else None
    if role == POLECAT:
        return f"gt-{rig}-{name}" if rig and name else None
    return None


def parse_session_name(session: str) -> tuple[str, str | None, str] | None:
    """Reverse ``session_name_for_agent``: return ``(role, rig, name)``.

    ``gt-<rig>-<rest>`` sessions that are not witness, refinery or crew are
    assumed to be polecats.  Rig names containing ``-`` cannot be told apart
    and are read as their first hyphen segment.
    """
    for role in TOWN_SINGLETONS:
        if session == f"hq-{role}":
            return role, None, role

    if not session.startswith("gt-"):
        return None
    parts = session.split("-")
    if len(parts) < 3 or not parts[1] or not parts[2]:
        return None

    rig, kind = parts[1], parts[2]
    if kind in (WITNESS, REFINERY):
        return kind, rig, kind
    if kind == CREW and len(parts) >= 4:
        return CREW, rig, "-".join(parts[3:])
    return POLECAT, rig, "-".join(parts[2:])

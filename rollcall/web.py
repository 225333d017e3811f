"""FastAPI read-only API over the agent snapshot.

Provides:
    GET /town                       — town name, root and configured rigs
    GET /agents                     — reconciled roster (fresh on every call)
    GET /mail/unread?identity=...   — unread count + preview per identity
    GET /mail/inbox?identity=...    — an identity's mail, newest first

Every request recomputes from the trackers and tmux; nothing is cached
except the ``TownContext`` resolved when the app is created.
"""

import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from rollcall.addresses import address_to_identity
from rollcall.agents import AggregateError
from rollcall.beads import TrackerError
from rollcall.config import (
    TownContext,
    get_setting,
    list_rig_names,
    load_town_config,
    resolve_context,
)
from rollcall.logging_setup import configure_logging, log_caller, parse_level
from rollcall.mail import build_mail_index_for_identities, list_inbox
from rollcall.paths import home as _default_home
from rollcall.snapshot import collect_agent_snapshot

logger = logging.getLogger(__name__)


def create_app(ctx: TownContext | None = None, rc_home: Path | None = None) -> FastAPI:
    """Create and configure the FastAPI app.

    When *ctx* is ``None`` (e.g. when called by uvicorn as a factory), the
    town context is resolved from the environment.
    """
    if rc_home is None:
        rc_home = _default_home()
    configure_logging(rc_home, level=parse_level(get_setting(rc_home, "log_level")), console=True)
    log_caller.set("web")

    if ctx is None:
        ctx = resolve_context(rc_home)

    app = FastAPI(title="Rollcall")
    app.state.ctx = ctx

    class TownInfo(BaseModel):
        name: str
        root: str
        rigs: list[str]
        operator: str

    @app.get("/town", response_model=TownInfo)
    def get_town():
        """Return town metadata for the dashboard header."""
        town = load_town_config(ctx.root)
        return TownInfo(
            name=town.get("name") or ctx.root.name,
            root=str(ctx.root),
            rigs=list_rig_names(ctx.root),
            operator=ctx.operator,
        )

    @app.get("/agents")
    async def get_agents():
        """Return the reconciled agent roster."""
        try:
            snapshot = await collect_agent_snapshot(ctx)
        except AggregateError as e:
            logger.error("Agent snapshot failed: %s", e)
            raise HTTPException(status_code=503, detail=str(e))
        return {
            "agents": [a.to_dict() for a in snapshot.agents],
            "errors": snapshot.errors,
        }

    @app.get("/mail/unread")
    async def get_unread(identity: list[str] = Query(...)):
        """Return unread counts and previews for the given identities."""
        index = await build_mail_index_for_identities(ctx, [address_to_identity(i) for i in identity])
        return {k: v.to_dict() for k, v in index.items()}

    @app.get("/mail/inbox")
    async def get_inbox(identity: str):
        """Return every open message for one identity."""
        try:
            messages = await list_inbox(ctx, identity)
        except TrackerError as e:
            raise HTTPException(status_code=503, detail=e.message)
        return [m.to_dict() for m in messages]

    return app

"""Rollcall CLI entry point using Click.

Commands:
    rollcall agents [--json]                — print the reconciled roster
    rollcall mail IDENTITY... [--json]      — unread counts + previews
    rollcall inbox IDENTITY [--all]         — list an identity's mail
    rollcall serve [--host H] [--port N]    — run the read-only HTTP API
    rollcall config set KEY VALUE           — store an operator setting
    rollcall config show                    — print the operator settings
"""

import asyncio
import json
from pathlib import Path

import click

from rollcall import __version__
from rollcall.config import SETTING_KEYS
from rollcall.paths import home as _home

DEFAULT_PORT = 3549


def _configure_logging(ctx: click.Context) -> Path:
    """Set up logging for this invocation and return the rollcall home."""
    import logging

    from rollcall.config import get_setting
    from rollcall.logging_setup import configure_logging, log_caller, parse_level

    rc_home = _home(ctx.obj.get("home_override"))
    verbose = ctx.obj.get("verbose", False)
    level = logging.DEBUG if verbose else parse_level(get_setting(rc_home, "log_level"))
    configure_logging(rc_home, level=level, console=verbose)
    log_caller.set("cli")
    return rc_home


def _get_ctx(ctx: click.Context):
    """Resolve the town context once per invocation."""
    from rollcall.config import TownRootNotFound, resolve_context

    if "town" not in ctx.obj:
        rc_home = _configure_logging(ctx)
        try:
            ctx.obj["town"] = resolve_context(rc_home, town_root=ctx.obj.get("town_root"))
        except TownRootNotFound as e:
            raise click.ClickException(str(e))
    return ctx.obj["town"]


@click.group()
@click.version_option(version=__version__, prog_name="rollcall")
@click.option(
    "--home", "home_override", type=click.Path(path_type=Path), default=None,
    envvar="ROLLCALL_HOME",
    help="Override rollcall home directory (default: ~/.rollcall).",
)
@click.option(
    "--town-root", type=click.Path(path_type=Path, file_okay=False), default=None,
    help="Town root (default: GT_TOWN_ROOT, config, or search upward).",
)
@click.option(
    "--env-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to .env file to load (e.g. for GT_TOWN_ROOT, GT_EXTRA_RIGS).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log at DEBUG level to stderr.")
@click.pass_context
def main(
    ctx: click.Context,
    home_override: Path | None,
    town_root: Path | None,
    env_file: Path | None,
    verbose: bool,
) -> None:
    """Rollcall: who is alive in the town and how much mail they have."""
    # Already-set variables win over the file.
    if env_file:
        from dotenv import load_dotenv
        load_dotenv(env_file)

    ctx.ensure_object(dict)
    ctx.obj["home_override"] = home_override
    ctx.obj["town_root"] = town_root
    ctx.obj["verbose"] = verbose


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw snapshot as JSON.")
@click.pass_context
def agents(ctx: click.Context, as_json: bool) -> None:
    """Print the reconciled agent roster."""
    from rollcall.agents import AggregateError
    from rollcall.snapshot import collect_agent_snapshot

    town = _get_ctx(ctx)
    try:
        snapshot = asyncio.run(collect_agent_snapshot(town))
    except AggregateError as e:
        raise click.ClickException(f"No agent source could be read: {e}")

    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return

    if not snapshot.agents:
        click.echo("No agents found.")
    for agent in snapshot.agents:
        status = click.style("running", fg="green") if agent.running else click.style("stopped", fg="red")
        line = f"  {agent.address:<28} {agent.role:<9} {status}"
        if agent.state:
            line += f"  [{agent.state}]"
        if agent.unread_mail:
            line += f"  ✉ {agent.unread_mail}"
        if agent.hook_bead:
            line += f"  → {agent.hook_bead_title or agent.hook_bead}"
        if agent.branch:
            line += f"  ({agent.branch})"
        click.echo(line)
    for err in snapshot.errors:
        click.echo(click.style(f"warning: {err}", fg="yellow"), err=True)


@main.command()
@click.argument("identities", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Print as JSON.")
@click.pass_context
def mail(ctx: click.Context, identities: tuple[str, ...], as_json: bool) -> None:
    """Show unread counts and previews for IDENTITIES."""
    from rollcall.addresses import address_to_identity
    from rollcall.mail import build_mail_index_for_identities

    town = _get_ctx(ctx)
    index = asyncio.run(
        build_mail_index_for_identities(town, [address_to_identity(i) for i in identities])
    )
    if as_json:
        click.echo(json.dumps({k: v.to_dict() for k, v in index.items()}, indent=2))
        return
    for identity, entry in index.items():
        line = f"  {identity:<28} {entry.unread} unread"
        if entry.first_subject:
            line += f"  latest: {entry.first_subject}"
            if entry.first_from:
                line += f" (from {entry.first_from})"
        click.echo(line)


@main.command()
@click.argument("identity")
@click.option("--all", "show_all", is_flag=True, help="Include infrastructure chatter.")
@click.pass_context
def inbox(ctx: click.Context, identity: str, show_all: bool) -> None:
    """List open mail for IDENTITY, newest first."""
    from rollcall.beads import TrackerError
    from rollcall.mail import list_inbox

    town = _get_ctx(ctx)
    try:
        messages = asyncio.run(list_inbox(town, identity))
    except TrackerError as e:
        raise click.ClickException(e.message)

    shown = [m for m in messages if show_all or not m.is_infrastructure]
    if not shown:
        click.echo("No mail.")
    for m in shown:
        marker = " " if m.read else "*"
        click.echo(f"{marker} {m.id:<12} {m.sender:<20} {m.subject}")


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=DEFAULT_PORT, show_default=True, type=int)
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Run the read-only HTTP API."""
    import uvicorn

    from rollcall.web import create_app

    town = _get_ctx(ctx)
    app = create_app(town, rc_home=_home(ctx.obj.get("home_override")))
    click.echo(f"Serving {town.root} on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")


# ──────────────────────────────────────────────────────────────
# rollcall config set / show
# ──────────────────────────────────────────────────────────────

@main.group()
def config() -> None:
    """Manage operator settings in config.yaml."""
    pass


@config.command("set")
@click.argument("key", type=click.Choice(SETTING_KEYS))
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set KEY to VALUE (parsed as YAML, so 30 is a number and [a, b] a list)."""
    import yaml

    from rollcall.config import set_setting

    rc_home = _configure_logging(ctx)
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        parsed = value
    set_setting(rc_home, key, parsed)
    click.echo(f"{key} set to: {parsed}")


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the current settings."""
    from rollcall.config import get_setting

    rc_home = _configure_logging(ctx)
    for key in SETTING_KEYS:
        click.echo(f"{key + ':':<17}{get_setting(rc_home, key, '(not set)')}")

"""Thin client for the ``bd`` issue tracker.

Agents and mail are both stored as typed beads.  This module only knows how
to run ``bd`` against one database and turn its JSON into ``IssueRecord``
objects; deciding *which* databases to ask lives in ``rollcall.workspace``.

Every call carries its own timeout.  Any failure (spawn error, non-zero
exit, timeout, unparseable output) is raised as ``TrackerError`` so callers
can substitute an empty result for that one source.
"""

import asyncio
import json
import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from rollcall.config import DEFAULT_BD_TIMEOUT
from rollcall.paths import beads_marker

logger = logging.getLogger(__name__)

BD_BIN = "bd"
REDIRECT_DEPTH = 3


class TrackerError(RuntimeError):
    """A ``bd`` invocation failed.

    ``code`` is one of ``TIMEOUT``, ``SPAWN_ERROR``, ``COMMAND_FAILED`` or
    ``PARSE_ERROR``.
    """

    def __init__(self, code: str, message: str, stderr: str | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.stderr = stderr


@dataclass(frozen=True)
class IssueRecord:
    """One bead as returned by ``bd list --json`` / ``bd show --json``."""

    id: str
    title: str = ""
    description: str = ""
    status: str = ""
    priority: int = 2
    issue_type: str = ""
    created_at: str | None = None
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    agent_state: str | None = None
    hook_bead: str | None = None
    pinned: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "IssueRecord":
        priority = data.get("priority")
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            status=data.get("status") or "",
            priority=priority if isinstance(priority, int) else 2,
            issue_type=data.get("issue_type") or "",
            created_at=data.get("created_at"),
            assignee=data.get("assignee") or None,
            labels=tuple(str(label) for label in data.get("labels") or ()),
            agent_state=data.get("agent_state") or None,
            hook_bead=data.get("hook_bead") or None,
            pinned=bool(data.get("pinned")),
        )


def parse_issues(payload) -> list[IssueRecord]:
    """Convert decoded ``bd`` JSON into records, skipping malformed entries."""
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        return []
    issues = []
    for entry in payload:
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.debug("Skipping malformed bead entry: %r", entry)
            continue
        issues.append(IssueRecord.from_dict(entry))
    return issues


def _follow_redirect(beads_dir: Path, work_dir: Path) -> Path | None:
    redirect = beads_dir / "redirect"
    if not redirect.is_file():
        return None
    try:
        target = redirect.read_text().strip()
    except OSError:
        return None
    if not target:
        return None
    return (work_dir / target).resolve()


def resolve_beads_dir(work_dir: Path) -> Path:
    """Return the tracker database for *work_dir*, following redirects.

    ``.beads/redirect`` holds a path relative to the directory that owns the
    ``.beads/`` it sits in.  At most ``REDIRECT_DEPTH`` further hops are
    followed; a redirect pointing back at itself stops the chain.
    """
    beads_dir = beads_marker(work_dir)
    resolved = _follow_redirect(beads_dir, work_dir)
    if resolved is None or resolved == beads_dir.resolve():
        return beads_dir

    current = resolved
    for _ in range(REDIRECT_DEPTH):
        nxt = _follow_redirect(current, current.parent)
        if nxt is None or nxt == current:
            break
        current = nxt
    return current


class BeadsClient:
    """Runs ``bd`` against one database from one working directory."""

    def __init__(self, work_dir: Path, beads_dir: Path | None = None, timeout: float = DEFAULT_BD_TIMEOUT):
        self.work_dir = work_dir
        self.beads_dir = beads_dir or resolve_beads_dir(work_dir)
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"BeadsClient({self.work_dir}, beads_dir={self.beads_dir})"

    def run(self, args: list[str]):
        """Run ``bd`` synchronously and return decoded JSON (``[]`` if empty)."""
        full_args = [BD_BIN, "--no-daemon", "--allow-stale", *args]
        env = {**os.environ, "BEADS_DIR": str(self.beads_dir)}
        started = time.monotonic()
        logger.debug("bd exec start | cwd=%s | args=%s", self.work_dir, full_args[1:])
        try:
            result = subprocess.run(
                full_args,
                cwd=str(self.work_dir),
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise TrackerError("TIMEOUT", f"bd timed out after {self.timeout:g}s")
        except OSError as e:
            raise TrackerError("SPAWN_ERROR", str(e))

        stdout = (result.stdout or "").strip()
        stderr = (result.stderr or "").strip()
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if result.returncode != 0 or (not stdout and stderr):
            message = stderr or f"bd exited with code {result.returncode}"
            raise TrackerError("COMMAND_FAILED", message, stderr=stderr or None)
        if not stdout:
            return []
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError:
            raise TrackerError("PARSE_ERROR", "Failed to parse bd JSON output", stderr=stdout[:500])

        logger.debug("bd exec success | args=%s | %dms", full_args[1:], elapsed_ms)
        return data

    async def list_issues(
        self,
        issue_type: str,
        *,
        status: str | None = None,
        all_statuses: bool = False,
        assignee: str | None = None,
        label: str | None = None,
    ) -> list[IssueRecord]:
        """``bd list --type <issue_type> ... --json``."""
        args = ["list", "--type", issue_type]
        if assignee is not None:
            args += ["--assignee", assignee]
        if label is not None:
            args += ["--label", label]
        if status is not None:
            args += ["--status", status]
        if all_statuses:
            args.append("--all")
        args.append("--json")
        return parse_issues(await asyncio.to_thread(self.run, args))

    async def show(self, ids: list[str]) -> list[IssueRecord]:
        """``bd show <ids...> --json``."""
        if not ids:
            return []
        return parse_issues(await asyncio.to_thread(self.run, ["show", *ids, "-q", "--json"]))

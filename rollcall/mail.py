"""Mail indexing: unread counts and previews per agent identity.

Mail lives in the town tracker as beads of type ``message``.  The recipient
is the bead's assignee; extra recipients, the sender and the read marker
are labels (see ``rollcall.mail_labels``).

Two ways to build the index:

``build_mail_index``
    Bulk mode.  All mail was fetched once; every record is matched
    against the known identities.
``build_mail_index_for_identities``
    Targeted mode for a handful of identities.  Each identity gets its own
    concurrent queries, and one identity's failure only zeroes that
    identity.

An unread record counts for its assignee and for every cc'd identity.  The
preview is the unread record with the latest ``created_at``; ties go to the
record processed last, and an unparseable timestamp counts as the epoch.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from rollcall.addresses import address_to_identity, identity_to_address, identity_variants
from rollcall.beads import BeadsClient, IssueRecord, TrackerError, resolve_beads_dir
from rollcall.config import TownContext
from rollcall.mail_labels import parse_message_labels

logger = logging.getLogger(__name__)

MAIL_TYPE = "message"
MAIL_STATUSES = frozenset({"open", "hooked"})
CLOSED = "closed"


@dataclass
class MailIndexEntry:
    unread: int = 0
    first_subject: str | None = None
    first_from: str | None = None

    def to_dict(self) -> dict:
        data = {"unread": self.unread}
        if self.first_subject:
            data["first_subject"] = self.first_subject
        if self.first_from:
            data["first_from"] = self.first_from
        return data


def parse_timestamp(value: str | None) -> float:
    """Epoch seconds for an ISO-8601 timestamp; 0.0 if missing or invalid."""
    if not value:
        return 0.0
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return 0.0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def is_unread(issue: IssueRecord) -> bool:
    return issue.status != CLOSED and not parse_message_labels(issue.labels).has_read_label


class _Preview:
    """Running unread count + latest-record preview for one identity."""

    def __init__(self):
        self.entry = MailIndexEntry()
        self.latest = 0.0

    def add(self, issue: IssueRecord, sender: str | None) -> None:
        self.entry.unread += 1
        timestamp = parse_timestamp(issue.created_at)
        if timestamp >= self.latest:
            self.latest = timestamp
            self.entry.first_subject = issue.title or None
            self.entry.first_from = sender


# ---------------------------------------------------------------------------
# Bulk mode
# ---------------------------------------------------------------------------

def build_mail_index(
    issues: Iterable[IssueRecord],
    identities: Iterable[str],
) -> dict[str, MailIndexEntry]:
    """Index already-fetched mail against *identities*.

    Every identity in *identities* gets an entry, even with no mail.
    """
    variant_to_identity: dict[str, str] = {}
    previews: dict[str, _Preview] = {}
    for identity in identities:
        for variant in identity_variants(identity):
            variant_to_identity[variant] = identity
        previews[identity] = _Preview()

    def lookup(value: str | None) -> str | None:
        if not value:
            return None
        return variant_to_identity.get(value) or variant_to_identity.get(address_to_identity(value))

    for issue in issues:
        labels = parse_message_labels(issue.labels)
        candidates = {lookup(issue.assignee), *(lookup(cc) for cc in labels.cc)}
        candidates.discard(None)
        if not candidates:
            continue
        if issue.status == CLOSED or labels.has_read_label:
            continue
        for identity in candidates:
            previews[identity].add(issue, labels.sender)

    return {identity: preview.entry for identity, preview in previews.items()}


async def _town_client(ctx: TownContext) -> BeadsClient:
    beads_dir = await asyncio.to_thread(resolve_beads_dir, ctx.root)
    return BeadsClient(ctx.root, beads_dir, timeout=ctx.bd_timeout)


async def list_mail_issues(ctx: TownContext) -> list[IssueRecord]:
    """Fetch all open/hooked mail from the town database.

    Raises ``TrackerError`` on failure.
    """
    client = await _town_client(ctx)
    issues = await client.list_issues(MAIL_TYPE, all_statuses=True)
    return [i for i in issues if i.status.lower() in MAIL_STATUSES]


# ---------------------------------------------------------------------------
# Targeted mode
# ---------------------------------------------------------------------------

async def list_mail_issues_for_identity(ctx: TownContext, identity: str) -> list[IssueRecord]:
    """Fetch mail addressed or cc'd to *identity*, deduplicated by bead id.

    Runs one query per (address variant, status) for the assignee and one
    per variant for the ``cc:`` label, all concurrently.  Raises the first
    ``TrackerError`` only if every query failed.
    """
    client = await _town_client(ctx)
    variants = identity_variants(identity)

    queries = [
        client.list_issues(MAIL_TYPE, assignee=variant, status=status)
        for variant in variants
        for status in ("open", "hooked")
    ]
    queries += [
        client.list_issues(MAIL_TYPE, label=f"cc:{variant}", status="open")
        for variant in variants
    ]

    outcomes = await asyncio.gather(*queries, return_exceptions=True)

    seen: set[str] = set()
    issues: list[IssueRecord] = []
    errors: list[TrackerError] = []
    for outcome in outcomes:
        if isinstance(outcome, TrackerError):
            errors.append(outcome)
            continue
        if isinstance(outcome, BaseException):
            raise outcome
        for issue in outcome:
            if issue.id in seen:
                continue
            seen.add(issue.id)
            issues.append(issue)

    if errors and len(errors) == len(outcomes):
        raise errors[0]
    return issues


async def _entry_for_identity(ctx: TownContext, identity: str) -> MailIndexEntry:
    try:
        issues = await list_mail_issues_for_identity(ctx, identity)
    except TrackerError as e:
        logger.warning("Mail index query failed | identity=%s | %s", identity, e.message)
        return MailIndexEntry(unread=0)

    preview = _Preview()
    for issue in issues:
        if is_unread(issue):
            preview.add(issue, parse_message_labels(issue.labels).sender)
    return preview.entry


async def build_mail_index_for_identities(
    ctx: TownContext,
    identities: Iterable[str],
) -> dict[str, MailIndexEntry]:
    """Targeted mail index for a small set of identities."""
    unique = list(dict.fromkeys(identities))
    entries = await asyncio.gather(*(_entry_for_identity(ctx, i) for i in unique))
    return dict(zip(unique, entries))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

MESSAGE_TYPES = ("notification", "task", "scavenge", "reply")

_INFRASTRUCTURE_PREFIXES = (
    "witness_ping",
    "merge_ready",
    "merged:",
    "polecat_done",
    "session ended",
    "handoff complete",
)


def is_infrastructure_message(subject: str) -> bool:
    """True for machine-to-machine chatter (pings, merge notices, handoffs)."""
    return subject.strip().lower().startswith(_INFRASTRUCTURE_PREFIXES)


@dataclass
class Message:
    id: str
    sender: str
    to: str
    subject: str
    body: str
    timestamp: str
    read: bool
    priority: int
    type: str
    thread_id: str
    reply_to: str | None
    pinned: bool
    cc: list[str]
    is_infrastructure: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from": self.sender,
            "to": self.to,
            "subject": self.subject,
            "body": self.body,
            "timestamp": self.timestamp,
            "read": self.read,
            "priority": self.priority,
            "type": self.type,
            "thread_id": self.thread_id,
            "reply_to": self.reply_to,
            "pinned": self.pinned,
            "cc": self.cc,
            "is_infrastructure": self.is_infrastructure,
        }


def _normalize_timestamp(value: str | None) -> str:
    if not value:
        return datetime.now(timezone.utc).isoformat()
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return value
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def issue_to_message(issue: IssueRecord) -> Message:
    """Convert a mail bead into a ``Message``."""
    labels = parse_message_labels(issue.labels)
    return Message(
        id=issue.id,
        sender=identity_to_address(labels.sender) if labels.sender else "unknown",
        to=identity_to_address(issue.assignee) if issue.assignee else "unknown",
        subject=issue.title,
        body=issue.description,
        timestamp=_normalize_timestamp(issue.created_at),
        read=issue.status == CLOSED or labels.has_read_label,
        priority=issue.priority if issue.priority in range(5) else 2,
        type=labels.msg_type if labels.msg_type in MESSAGE_TYPES else "notification",
        thread_id=labels.thread_id or "",
        reply_to=labels.reply_to,
        pinned=issue.pinned,
        cc=[identity_to_address(cc) for cc in labels.cc],
        is_infrastructure=is_infrastructure_message(issue.title),
    )


async def list_inbox(ctx: TownContext, identity: str) -> list[Message]:
    """Messages addressed or cc'd to *identity*, newest first."""
    issues = await list_mail_issues_for_identity(ctx, address_to_identity(identity))
    issues.sort(key=lambda i: parse_timestamp(i.created_at), reverse=True)
    return [issue_to_message(i) for i in issues]

"""Mail metadata encoded in tracker labels.

Mail beads carry their envelope as prefixed labels::

    from:mayor/  thread:t-91  reply-to:hq-77  msg-type:task  cc:acme/witness  read

Each label parses to one variant of a small tagged union.  Labels that
match no prefix become ``Unrecognized`` and are dropped when folding the
labels into ``MessageLabels``.
"""

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class Sender:
    value: str


@dataclass(frozen=True)
class Thread:
    value: str


@dataclass(frozen=True)
class ReplyTo:
    value: str


@dataclass(frozen=True)
class MsgType:
    value: str


@dataclass(frozen=True)
class Cc:
    value: str


@dataclass(frozen=True)
class ReadMarker:
    pass


@dataclass(frozen=True)
class Unrecognized:
    raw: str


Label = Union[Sender, Thread, ReplyTo, MsgType, Cc, ReadMarker, Unrecognized]

_PREFIXES: tuple[tuple[str, type], ...] = (
    ("from:", Sender),
    ("thread:", Thread),
    ("reply-to:", ReplyTo),
    ("msg-type:", MsgType),
    ("cc:", Cc),
)

READ_LABEL = "read"


def parse_label(label: str) -> Label:
    """Classify a single label."""
    for prefix, variant in _PREFIXES:
        if label.startswith(prefix):
            return variant(label[len(prefix):])
    if label == READ_LABEL:
        return ReadMarker()
    return Unrecognized(label)


@dataclass
class MessageLabels:
    sender: str | None = None
    thread_id: str | None = None
    reply_to: str | None = None
    msg_type: str | None = None
    cc: list[str] = field(default_factory=list)
    has_read_label: bool = False


def parse_message_labels(labels: list[str] | tuple[str, ...] | None) -> MessageLabels:
    """Fold a bead's labels into its mail envelope.

    Single-valued fields keep the last occurrence; ``cc:`` accumulates.
    """
    result = MessageLabels()
    for label in labels or ():
        parsed = parse_label(label)
        if isinstance(parsed, Sender):
            result.sender = parsed.value
        elif isinstance(parsed, Thread):
            result.thread_id = parsed.value
        elif isinstance(parsed, ReplyTo):
            result.reply_to = parsed.value
        elif isinstance(parsed, MsgType):
            result.msg_type = parsed.value
        elif isinstance(parsed, Cc):
            result.cc.append(parsed.value)
        elif isinstance(parsed, ReadMarker):
            result.has_read_label = True
        elif isinstance(parsed, Unrecognized):
            continue
    return result

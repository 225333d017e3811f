"""Shared test fixtures for rollcall tests."""

import json

import pytest

from rollcall.beads import IssueRecord
from rollcall.config import TownContext


SAMPLE_TOWN_NAME = "testtown"
SAMPLE_RIGS = ["acme", "beta"]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Keep the developer's town and home out of every test."""
    monkeypatch.delenv("GT_TOWN_ROOT", raising=False)
    monkeypatch.delenv("GT_EXTRA_RIGS", raising=False)
    monkeypatch.setenv("ROLLCALL_HOME", str(tmp_path / "rc-home"))
    # Leave the root logger to pytest's capture.
    monkeypatch.setattr("rollcall.logging_setup._configured", True)


@pytest.fixture
def town(tmp_path):
    """Create a town with two configured rigs, each with its own tracker dir.

    Returns the town root path.
    """
    root = tmp_path / "town"
    (root / "mayor").mkdir(parents=True)
    (root / "mayor" / "town.json").write_text(json.dumps({"name": SAMPLE_TOWN_NAME}))
    (root / "mayor" / "rigs.json").write_text(
        json.dumps({"rigs": {name: {} for name in SAMPLE_RIGS}})
    )
    (root / ".beads").mkdir()
    for rig in SAMPLE_RIGS:
        (root / rig / ".beads").mkdir(parents=True)
    return root


@pytest.fixture
def town_ctx(town):
    """A TownContext rooted at the sample town, with cwd at the root."""
    return TownContext(root=town.resolve(), cwd=town.resolve(), bd_timeout=1.0)


def make_issue(id: str, **overrides) -> IssueRecord:
    """Build an IssueRecord with sensible defaults."""
    fields = {
        "title": "",
        "description": "",
        "status": "open",
        "issue_type": "agent",
        "created_at": "2026-01-11T12:00:00Z",
    }
    fields.update(overrides)
    if "labels" in fields:
        fields["labels"] = tuple(fields["labels"])
    return IssueRecord(id=id, **fields)

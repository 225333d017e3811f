"""Tests for address / identity / session-name mapping."""

import pytest

from rollcall.addresses import (
    address_to_identity,
    build_agent_address,
    identity_to_address,
    identity_variants,
    parse_session_name,
    session_name_for_agent,
)


class TestAddressToIdentity:
    def test_crew_and_polecat_collapse_to_same_identity(self):
        assert address_to_identity("acme/crew/vin") == "acme/vin"
        assert address_to_identity("acme/vin") == "acme/vin"

    def test_polecats_segment_collapses(self):
        assert address_to_identity("acme/polecats/nux") == "acme/nux"

    @pytest.mark.parametrize("address", ["mayor", "mayor/"])
    def test_mayor_spellings(self, address):
        assert address_to_identity(address) == "mayor/"

    @pytest.mark.parametrize("address", ["deacon", "deacon/"])
    def test_deacon_spellings(self, address):
        assert address_to_identity(address) == "deacon/"

    def test_overseer_is_kept(self):
        assert address_to_identity("overseer") == "overseer"

    def test_trailing_slash_stripped(self):
        assert address_to_identity("acme/witness/") == "acme/witness"

    def test_other_three_segment_paths_unchanged(self):
        assert address_to_identity("acme/dogs/rex") == "acme/dogs/rex"


class TestIdentityToAddress:
    def test_rig_identity_returned_unchanged(self):
        """The crew/polecat distinction is lost without a role."""
        assert identity_to_address("acme/vin") == "acme/vin"

    def test_role_resolves_crew(self):
        assert identity_to_address("acme/vin", role="crew") == "acme/crew/vin"

    def test_role_polecat_stays_collapsed(self):
        assert identity_to_address("acme/nux", role="polecat") == "acme/nux"

    def test_singletons(self):
        assert identity_to_address("mayor") == "mayor/"
        assert identity_to_address("deacon/") == "deacon/"

    def test_uncollapsed_crew_address_is_collapsed(self):
        assert identity_to_address("acme/crew/vin") == "acme/vin"


class TestIdentityVariants:
    def test_mayor_has_bare_variant(self):
        assert identity_variants("mayor/") == ["mayor/", "mayor"]

    def test_rig_identity_has_single_variant(self):
        assert identity_variants("acme/vin") == ["acme/vin"]


class TestBuildAgentAddress:
    def test_witness(self):
        assert build_agent_address("witness", "acme", None) == "acme/witness"

    def test_refinery_requires_rig(self):
        assert build_agent_address("refinery", None, None) is None

    def test_crew(self):
        assert build_agent_address("crew", "acme", "vin") == "acme/crew/vin"

    def test_polecat(self):
        assert build_agent_address("polecat", "acme", "nux") == "acme/nux"

    def test_polecat_requires_name(self):
        assert build_agent_address("polecat", "acme", None) is None

    def test_town_singletons_ignore_rig(self):
        assert build_agent_address("mayor", "acme", "x") == "mayor/"
        assert build_agent_address("deacon", None, None) == "deacon/"

    def test_unknown_role(self):
        assert build_agent_address("dog", None, "rex") is None


class TestSessionNames:
    def test_witness(self):
        assert session_name_for_agent("witness", "acme", None) == "gt-acme-witness"

    def test_crew(self):
        assert session_name_for_agent("crew", "acme", "vin") == "gt-acme-crew-vin"

    def test_polecat(self):
        assert session_name_for_agent("polecat", "acme", "nux") == "gt-acme-nux"

    def test_town_singletons(self):
        assert session_name_for_agent("mayor", None, None) == "hq-mayor"
        assert session_name_for_agent("deacon", None, None) == "hq-deacon"

    def test_missing_parts(self):
        assert session_name_for_agent("crew", "acme", None) is None
        assert session_name_for_agent("witness", None, None) is None


class TestParseSessionName:
    @pytest.mark.parametrize("session,expected", [
        ("hq-mayor", ("mayor", None, "mayor")),
        ("hq-deacon", ("deacon", None, "deacon")),
        ("gt-acme-witness", ("witness", "acme", "witness")),
        ("gt-acme-refinery", ("refinery", "acme", "refinery")),
        ("gt-acme-crew-vin", ("crew", "acme", "vin")),
        ("gt-acme-crew-big-vin", ("crew", "acme", "big-vin")),
        ("gt-acme-nux", ("polecat", "acme", "nux")),
        ("gt-acme-nux-2", ("polecat", "acme", "nux-2")),
    ])
    def test_grammar(self, session, expected):
        assert parse_session_name(session) == expected

    def test_bare_crew_is_a_polecat_named_crew(self):
        assert parse_session_name("gt-acme-crew") == ("polecat", "acme", "crew")

    @pytest.mark.parametrize("session", ["main", "hq-other", "gt-acme", "gt--x", "gt-acme-"])
    def test_foreign_sessions(self, session):
        assert parse_session_name(session) is None

    def test_round_trip_through_session_name(self):
        for role, rig, name in [("crew", "acme", "vin"), ("polecat", "acme", "nux"), ("witness", "acme", "witness")]:
            assert parse_session_name(session_name_for_agent(role, rig, name)) == (role, rig, name)

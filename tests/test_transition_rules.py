import pytest

from app.models.load import LoadStatus
from app.services.transition_rules import (
    DEFAULT_RULE_TABLE,
    TRANSITION_RULES,
    TransitionRuleTable,
    parse_status,
)

S = LoadStatus

EXPECTED_EDGES = {
    S.CREATED: {S.PENDING, S.CANCELLED},
    S.PENDING: {S.OPTIMIZING, S.AVAILABLE, S.CANCELLED},
    S.OPTIMIZING: {S.AVAILABLE, S.CANCELLED},
    S.AVAILABLE: {S.RESERVED, S.CANCELLED, S.EXPIRED},
    S.RESERVED: {S.ASSIGNED, S.AVAILABLE, S.CANCELLED},
    S.ASSIGNED: {S.IN_TRANSIT, S.CANCELLED},
    S.IN_TRANSIT: {S.AT_PICKUP, S.DELAYED, S.CANCELLED},
    S.AT_PICKUP: {S.LOADED, S.EXCEPTION, S.CANCELLED},
    S.LOADED: {S.IN_TRANSIT, S.CANCELLED},
    S.DELAYED: {S.IN_TRANSIT, S.CANCELLED},
    S.EXCEPTION: {S.RESOLVED, S.CANCELLED},
    S.RESOLVED: {S.AT_PICKUP, S.AT_DROPOFF, S.CANCELLED},
    S.AT_DROPOFF: {S.DELIVERED, S.EXCEPTION, S.CANCELLED},
    S.DELIVERED: {S.COMPLETED, S.EXCEPTION},
    S.EXPIRED: {S.AVAILABLE},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}


def test_table_has_an_entry_for_every_status():
    assert set(TRANSITION_RULES) == set(LoadStatus)


@pytest.mark.parametrize("source", list(LoadStatus))
def test_allowed_matches_expected_edges_exhaustively(source):
    for target in LoadStatus:
        assert DEFAULT_RULE_TABLE.allowed(source, target) == (target in EXPECTED_EDGES[source])


def test_self_transitions_are_not_edges():
    for status in LoadStatus:
        assert not DEFAULT_RULE_TABLE.allowed(status, status)


def test_terminal_statuses():
    assert set(DEFAULT_RULE_TABLE.terminal_statuses()) == {S.COMPLETED, S.CANCELLED}
    assert DEFAULT_RULE_TABLE.is_terminal("completed")
    assert not DEFAULT_RULE_TABLE.is_terminal(S.EXPIRED)


def test_back_edges_are_present():
    assert DEFAULT_RULE_TABLE.allowed(S.EXPIRED, S.AVAILABLE)
    assert DEFAULT_RULE_TABLE.allowed(S.DELAYED, S.IN_TRANSIT)
    assert DEFAULT_RULE_TABLE.allowed(S.LOADED, S.IN_TRANSIT)
    assert DEFAULT_RULE_TABLE.allowed(S.RESERVED, S.AVAILABLE)


def test_accepts_plain_strings_and_rejects_unknown_statuses():
    assert DEFAULT_RULE_TABLE.allowed("available", "reserved")
    assert not DEFAULT_RULE_TABLE.allowed("available", "teleported")
    assert not DEFAULT_RULE_TABLE.allowed("draft", "pending")
    assert DEFAULT_RULE_TABLE.next_statuses("draft") == ()
    assert parse_status("in_transit") is S.IN_TRANSIT
    assert parse_status("nope") is None


def test_as_dict_serializes_every_status_in_declaration_order():
    rules = DEFAULT_RULE_TABLE.as_dict()
    assert list(rules) == [status.value for status in LoadStatus]
    assert rules["available"] == ["reserved", "cancelled", "expired"]
    assert rules["completed"] == []
    assert rules["cancelled"] == []


def test_edges_lists_each_transition_once():
    edges = list(DEFAULT_RULE_TABLE.edges())
    assert len(edges) == len(set(edges)) == sum(len(v) for v in EXPECTED_EDGES.values())


def test_table_is_read_only():
    with pytest.raises(TypeError):
        TRANSITION_RULES[S.COMPLETED] = (S.PENDING,)  # type: ignore[index]


def test_serialized_copy_does_not_leak_into_table():
    rules = DEFAULT_RULE_TABLE.as_dict()
    rules["completed"].append("pending")
    assert not DEFAULT_RULE_TABLE.allowed(S.COMPLETED, S.PENDING)


def test_incomplete_table_is_rejected():
    partial = {status: () for status in LoadStatus if status is not S.EXPIRED}
    with pytest.raises(ValueError, match="expired"):
        TransitionRuleTable(partial)

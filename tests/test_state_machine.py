import pytest

from app.payments.state_machine import (
    InvalidTransition,
    assert_transition,
    can_transition,
    is_terminal,
    payment_status_from_gateway,
)


def test_pending_payment_can_settle_either_way():
    for target in ("COMPLETED", "FAILED", "CANCELLED"):
        assert can_transition("PENDING", target)


@pytest.mark.parametrize("terminal", ["COMPLETED", "FAILED", "CANCELLED"])
def test_terminal_payment_never_moves(terminal):
    assert is_terminal(terminal)
    for target in ("PENDING", "COMPLETED", "FAILED", "CANCELLED"):
        assert not can_transition(terminal, target)
    with pytest.raises(InvalidTransition):
        assert_transition(terminal, "PENDING")


def test_escrow_transitions():
    assert can_transition("HELD", "RELEASED", entity="escrow")
    assert can_transition("HELD", "REFUNDED", entity="escrow")
    assert can_transition("PENDING", "HELD", entity="escrow")
    assert not can_transition("RELEASED", "REFUNDED", entity="escrow")
    assert not can_transition("REFUNDED", "HELD", entity="escrow")
    assert is_terminal("RELEASED", entity="escrow")
    assert not is_terminal("HELD", entity="escrow")


def test_tip_outcome_is_set_once():
    for outcome in ("WON", "LOST", "VOID", "CANCELLED"):
        assert can_transition("PENDING", outcome, entity="tip")
        assert is_terminal(outcome, entity="tip")
    assert not can_transition("WON", "LOST", entity="tip")


def test_status_lookup_is_case_insensitive():
    assert can_transition("pending", "COMPLETED")
    assert is_terminal("completed")
    assert not is_terminal("UNKNOWN")


@pytest.mark.parametrize(
    "gateway_status,expected",
    [
        ("pending", "PENDING"),
        ("completed", "COMPLETED"),
        ("FAILED", "FAILED"),
        ("cancelled", "CANCELLED"),
        ("refunded", "PENDING"),
        ("", "PENDING"),
        (None, "PENDING"),
    ],
)
def test_gateway_status_to_local(gateway_status, expected):
    assert payment_status_from_gateway(gateway_status) == expected


def test_unrecognized_gateway_status_maps_to_pending_with_warning(caplog):
    with caplog.at_level("WARNING", logger="tipsettle.payments"):
        assert payment_status_from_gateway("on_hold") == "PENDING"
    assert any("on_hold" in r.getMessage() for r in caplog.records)

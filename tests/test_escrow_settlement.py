from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from app.gateways.base import GatewayTransportError, PayoutResponse
from app.workers.escrow_settlement import EscrowSettler, ledger_reference, split_fees
from fakes import fake_registry


def _completed(world, *, tip_status: str, is_ai: bool = False):
    store = world.store
    tip = store.state.tips[world.tip.id]
    tip.status = tip_status
    tip.is_ai = is_ai
    purchase = store.state.purchases[world.purchase.id]
    purchase.status = "COMPLETED"
    store.state.payments[world.payment.id].status = "COMPLETED"
    return store.add_escrow(purchase, is_ai_tip=is_ai)


def _settler(store, clock, gateway=None):
    registry, gateway = fake_registry(gateway)
    return EscrowSettler(store, registry, clock=clock, app_url="https://api.example.com"), gateway


def test_ai_tip_won_keeps_full_amount_as_platform_revenue(world, clock):
    escrow = _completed(world, tip_status="WON", is_ai=True)
    settler, gateway = _settler(world.store, clock)

    summary = settler.run()
    assert summary == {"settled": 1, "released": 1, "refunded": 0, "skipped": 0, "errors": 0}

    e = world.store.state.escrows[escrow.id]
    assert e.status == "RELEASED"
    assert e.release_type == "PLATFORM_REVENUE"
    assert e.platform_fee == Decimal("100.00")
    assert e.platform_fee_percentage == Decimal("100")
    assert e.tipster_earnings == Decimal("0")
    assert e.platform_fee + e.tipster_earnings == e.amount

    [revenue] = world.store.payments_of_type("PLATFORM_REVENUE")
    assert revenue.status == "COMPLETED"
    assert revenue.is_payout is False
    assert revenue.payment_reference == ledger_reference("PLATFORM-REV", escrow.id)
    assert gateway.payout_calls == []


def test_tipster_tip_won_splits_commission_and_initiates_payout(world, clock):
    escrow = _completed(world, tip_status="WON")
    settler, gateway = _settler(world.store, clock)

    summary = settler.run()
    assert summary["released"] == 1

    e = world.store.state.escrows[escrow.id]
    assert e.release_type == "TIPSTER_PAYOUT"
    assert e.platform_fee == Decimal("10.00")
    assert e.tipster_earnings == Decimal("90.00")
    assert e.platform_fee_percentage == Decimal("10.00")
    assert e.released_to == world.tipster.user_id
    assert e.released_at == clock.now

    [payout] = world.store.payments_of_type("TIPSTER_PAYOUT")
    assert payout.amount == Decimal("90.00")
    assert payout.currency == "GHS"
    assert payout.is_payout is True
    assert payout.recipient_user_id == world.tipster.user_id
    assert payout.escrow_id == escrow.id
    assert payout.status == "PENDING"
    assert payout.provider_transaction_id == "PO-1"
    assert payout.provider_status == "pending"

    [call] = gateway.payout_calls
    assert call.amount == Decimal("90.00")
    assert call.order_id == payout.payment_reference
    assert call.notify_url == "https://api.example.com/v1/webhooks/fakepay/payout"


@pytest.mark.parametrize("outcome", ["VOID", "LOST", "CANCELLED"])
def test_void_or_lost_tip_refunds_buyer_in_full(world, clock, outcome):
    world.store.add_user(user_id=world.buyer.user_id, email="buyer@example.com", account_number="111", account_name="Ama", bank_name="GCB")
    escrow = _completed(world, tip_status=outcome)
    settler, gateway = _settler(world.store, clock)

    summary = settler.run()
    assert summary["refunded"] == 1

    e = world.store.state.escrows[escrow.id]
    assert e.status == "REFUNDED"
    assert e.release_type == "BUYER_REFUND"
    assert e.platform_fee == Decimal("0")
    assert e.tipster_earnings == Decimal("0")
    assert e.released_to == world.buyer.user_id

    [refund] = world.store.payments_of_type("ESCROW_REFUND")
    assert refund.amount == Decimal("100.00")
    assert refund.purchase_id == world.purchase.id
    assert refund.recipient_user_id == world.buyer.user_id
    assert refund.status == "PENDING"
    assert len(gateway.payout_calls) == 1


def test_refund_without_bank_details_skips_transfer(world, clock):
    _completed(world, tip_status="LOST")
    settler, gateway = _settler(world.store, clock)

    settler.run()

    [refund] = world.store.payments_of_type("ESCROW_REFUND")
    assert refund.status == "PENDING"
    assert refund.provider_transaction_id is None
    assert gateway.payout_calls == []


@pytest.mark.parametrize(
    "response",
    [PayoutResponse(success=False, message="insufficient balance"), GatewayTransportError("timeout")],
)
def test_payout_failure_still_releases_escrow(world, clock, response):
    escrow = _completed(world, tip_status="WON")
    settler, gateway = _settler(world.store, clock)
    gateway.payout_response = response

    summary = settler.run()
    assert summary["released"] == 1
    assert world.store.state.escrows[escrow.id].status == "RELEASED"

    [payout] = world.store.payments_of_type("TIPSTER_PAYOUT")
    assert payout.status == "PENDING"
    assert payout.provider_transaction_id is None


def test_no_active_settings_settles_nothing(world, clock):
    escrow = _completed(world, tip_status="WON")
    world.store.state.commission_rate = None
    settler, gateway = _settler(world.store, clock)

    summary = settler.run()
    assert summary["settled"] == 0
    assert summary["skipped"] == 1
    assert world.store.state.escrows[escrow.id].status == "HELD"
    assert world.store.payments_of_type("TIPSTER_PAYOUT") == []
    assert gateway.payout_calls == []


def test_failure_mid_settlement_rolls_back_escrow_and_ledger(world, clock, monkeypatch):
    escrow = _completed(world, tip_status="WON")
    settler, gateway = _settler(world.store, clock)

    from fakes import InMemorySession

    def boom(self, escrow):
        raise RuntimeError("disk full")

    monkeypatch.setattr(InMemorySession, "save_escrow", boom)

    summary = settler.run()
    assert summary["errors"] == 1
    assert world.store.state.escrows[escrow.id].status == "HELD"
    assert world.store.payments_of_type("TIPSTER_PAYOUT") == []


def test_second_run_does_not_settle_twice(world, clock):
    escrow = _completed(world, tip_status="WON")
    settler, gateway = _settler(world.store, clock)

    settler.run()
    summary = settler.run()

    assert summary["settled"] == 0
    assert len(world.store.payments_of_type("TIPSTER_PAYOUT")) == 1
    assert len(gateway.payout_calls) == 1
    assert world.store.state.escrows[escrow.id].status == "RELEASED"


def test_pending_tip_escrow_is_not_picked_up(world, clock):
    escrow = _completed(world, tip_status="PENDING")
    settler, _ = _settler(world.store, clock)

    assert settler.run()["settled"] == 0
    assert world.store.state.escrows[escrow.id].status == "HELD"


def test_missing_held_at_is_set_on_settlement(world, clock):
    escrow = _completed(world, tip_status="LOST")
    world.store.state.escrows[escrow.id].held_at = None
    settler, _ = _settler(world.store, clock)

    settler.run()
    assert world.store.state.escrows[escrow.id].held_at == clock.now


def test_currency_falls_back_by_gateway_when_no_purchase_payment(world, clock):
    escrow = _completed(world, tip_status="WON", is_ai=True)
    del world.store.state.payments[world.payment.id]
    world.store.state.purchases[world.purchase.id].payment_gateway = "stripe"
    settler, _ = _settler(world.store, clock)

    settler.run()
    [revenue] = world.store.payments_of_type("PLATFORM_REVENUE")
    assert revenue.currency == "USD"
    assert revenue.escrow_id == escrow.id


@pytest.mark.parametrize(
    "amount,rate,fee,earnings",
    [
        ("100.00", "0.10", "10.00", "90.00"),
        ("33.33", "0.15", "5.00", "28.33"),
        ("0.05", "0.10", "0.01", "0.04"),
        ("19.99", "0", "0.00", "19.99"),
    ],
)
def test_fee_split_always_sums_to_amount(amount, rate, fee, earnings):
    split = split_fees(Decimal(amount), Decimal(rate))
    assert split.platform_fee == Decimal(fee)
    assert split.tipster_earnings == Decimal(earnings)
    assert split.platform_fee + split.tipster_earnings == Decimal(amount)


def test_stats_reports_counts_and_totals(world, clock):
    _completed(world, tip_status="WON")
    settler, _ = _settler(world.store, clock)
    settler.run()

    stats = settler.stats()
    assert stats["released"] == 1
    assert stats["held"] == 0
    assert stats["platform_fees"] == "10.00"
    assert stats["tipster_earnings"] == "90.00"


def _rekey(store, escrow, new_id: str):
    row = store.state.escrows.pop(escrow.id)
    row.id = uuid.UUID(new_id)
    store.state.escrows[row.id] = row
    return row


def _second_purchase(world, *, tip_status: str, tipster_user_id=None):
    store = world.store
    tip = store.add_tip(tipster_user_id=tipster_user_id, status=tip_status)
    purchase = store.add_purchase(tip, world.buyer.user_id, status="COMPLETED", gateway="fakepay")
    store.add_payment(purchase, status="COMPLETED")
    return purchase


def test_escrows_sharing_an_id_prefix_both_settle(world, clock):
    first = _rekey(world.store, _completed(world, tip_status="LOST"), "deadbeef-0000-4000-8000-000000000000")
    other = _second_purchase(world, tip_status="LOST")
    second = _rekey(world.store, world.store.add_escrow(other), "deadbeef-1111-4000-8000-000000000000")
    settler, _ = _settler(world.store, clock)

    summary = settler.run()
    assert summary["refunded"] == 2
    assert summary["errors"] == 0

    refs = sorted(p.payment_reference for p in world.store.payments_of_type("ESCROW_REFUND"))
    assert refs == sorted([ledger_reference("ESCROW-REFUND", first.id), ledger_reference("ESCROW-REFUND", second.id)])
    assert refs[0] != refs[1]
    assert ledger_reference("ESCROW-REFUND", first.id) == "ESCROW-REFUND-deadbeef000040008000000000000000"


def test_failing_escrow_does_not_hold_back_later_ones(world, clock):
    # a WON tip without a tipster raises on every run
    broken = _rekey(world.store, _completed(world, tip_status="WON"), "00000000-0000-4000-8000-000000000001")
    world.store.state.tips[world.tip.id].tipster_user_id = None
    other = _second_purchase(world, tip_status="LOST")
    good = _rekey(world.store, world.store.add_escrow(other), "ffffffff-0000-4000-8000-000000000001")

    registry, _ = fake_registry()
    settler = EscrowSettler(world.store, registry, clock=clock, batch_size=1)

    for _ in range(3):
        settler.run()

    assert world.store.state.escrows[broken.id].status == "HELD"
    assert world.store.state.escrows[good.id].status == "REFUNDED"


def test_transfer_runs_after_commit_and_records_the_attempt(world, clock):
    _completed(world, tip_status="WON")
    settler, gateway = _settler(world.store, clock)
    open_during_payout = []
    original = gateway.initiate_payout

    def tracking(request):
        open_during_payout.append(world.store.open_sessions)
        return original(request)

    gateway.initiate_payout = tracking
    settler.run()

    assert open_during_payout == [0]
    [payout] = world.store.payments_of_type("TIPSTER_PAYOUT")
    assert payout.retry_count == 1
    assert payout.last_retry_at == clock.now
    assert payout.provider_transaction_id == "PO-1"


def test_failed_transfer_attempt_is_counted(world, clock):
    _completed(world, tip_status="WON")
    settler, gateway = _settler(world.store, clock)
    gateway.payout_response = PayoutResponse(success=False, message="insufficient balance")

    settler.run()

    [payout] = world.store.payments_of_type("TIPSTER_PAYOUT")
    assert payout.status == "PENDING"
    assert payout.retry_count == 1
    assert payout.last_retry_at == clock.now
    assert payout.provider_transaction_id is None

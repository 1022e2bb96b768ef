from __future__ import annotations

from app.payments.completion import apply_payment_status
from fakes import NOW, RecordingRelay, RecordingSender, make_notifier


def _complete(world, payment_id=None):
    with world.store.session() as s:
        payment = s.get_payment(payment_id or world.payment.id, for_update=True)
        return apply_payment_status(s, payment, "COMPLETED", now=NOW)


def test_completion_moves_purchase_and_holds_escrow(world):
    result = _complete(world)

    assert result.changed is True
    assert result.previous_status == "PENDING"
    assert result.escrow_created is True
    assert world.store.payment(world.payment.id).provider_processed_at == NOW

    [escrow] = world.store.escrows_for(world.purchase.id)
    assert escrow.status == "HELD"
    assert escrow.held_at == NOW
    assert escrow.amount == world.purchase.amount


def test_same_status_is_a_no_op(world):
    _complete(world)
    again = _complete(world)
    assert again.changed is False
    assert again.reason == "unchanged"
    assert len(world.store.escrows_for(world.purchase.id)) == 1


def test_terminal_payment_is_never_moved(world):
    world.store.state.payments[world.payment.id].status = "FAILED"

    result = _complete(world)

    assert result.changed is False
    assert result.reason == "invalid_transition"
    assert world.store.payment(world.payment.id).status == "FAILED"
    assert world.store.escrows_for(world.purchase.id) == []


def test_second_payment_for_paid_purchase_is_flagged_not_applied(world):
    _complete(world)
    second = world.store.add_payment(world.purchase)

    result = _complete(world, second.id)

    assert result.changed is False
    assert result.reason == "purchase_already_paid"
    flagged = world.store.payment(second.id)
    assert flagged.status == "PENDING"
    assert str(world.payment.id) in flagged.error_message
    assert len(world.store.escrows_for(world.purchase.id)) == 1


def test_notifier_sends_each_channel_once(world, clock):
    _complete(world)
    notifier, sender, relay = make_notifier(clock)

    notifier.notify(world.store, world.payment.id)
    notifier.notify(world.store, world.payment.id)

    assert len(sender.success) == 1
    assert len(relay.payloads) == 1
    payload = relay.payloads[0]
    assert payload["orderId"] == str(world.purchase.id)
    assert payload["paymentStatus"] == "paid"
    assert payload["totalAmount"] == 100.0
    assert payload["items"][0]["productId"] == str(world.tip.id)

    payment = world.store.payment(world.payment.id)
    assert payment.email_notification_sent is True
    assert payment.webhook_notification_sent is True
    assert payment.last_notification_sent_at == clock.now


def test_relay_is_retried_then_flag_set(world, clock):
    _complete(world)
    relay = RecordingRelay(results=[False, False, True])
    delays = []
    notifier, _, _ = make_notifier(clock, relay=relay)
    notifier.relay_base_delay_s = 1.0
    notifier.sleep = delays.append

    notifier.notify(world.store, world.payment.id)

    assert len(relay.payloads) == 3
    assert delays == [1.0, 2.0]
    assert world.store.payment(world.payment.id).webhook_notification_sent is True


def test_relay_giving_up_leaves_flag_clear_for_next_attempt(world, clock):
    _complete(world)
    notifier, _, relay = make_notifier(clock, relay=RecordingRelay(results=[False, False, False]))

    notifier.notify(world.store, world.payment.id)
    assert world.store.payment(world.payment.id).webhook_notification_sent is False

    notifier.notify(world.store, world.payment.id)
    assert len(relay.payloads) == 4
    assert world.store.payment(world.payment.id).webhook_notification_sent is True


def test_mail_failure_does_not_block_relay(world, clock):
    _complete(world)
    notifier, _, relay = make_notifier(clock, sender=RecordingSender(fail=True))

    notifier.notify(world.store, world.payment.id)

    payment = world.store.payment(world.payment.id)
    assert payment.email_notification_sent is False
    assert payment.webhook_notification_sent is True
    assert len(relay.payloads) == 1


def test_failed_payment_mails_buyer_without_relay(world, clock):
    with world.store.session() as s:
        payment = s.get_payment(world.payment.id, for_update=True)
        apply_payment_status(s, payment, "FAILED", now=NOW, reason="declined")
    notifier, sender, relay = make_notifier(clock)

    notifier.notify(world.store, world.payment.id)

    [(_, details)] = sender.failure
    assert "errorMessage" in details
    assert relay.payloads == []
    assert world.store.payment(world.payment.id).error_message == "declined"


def test_pending_payment_is_not_notified(world, clock):
    notifier, sender, relay = make_notifier(clock)
    notifier.notify(world.store, world.payment.id)
    assert sender.success == [] and sender.failure == []
    assert relay.payloads == []


def test_mail_and_relay_go_out_with_no_transaction_open(world, clock):
    _complete(world)
    open_during_send = []

    class _Sender(RecordingSender):
        def send_payment_success(self, email, details):
            open_during_send.append(("mail", world.store.open_sessions))
            super().send_payment_success(email, details)

    def relay(payload):
        open_during_send.append(("relay", world.store.open_sessions))
        return True

    notifier, _, _ = make_notifier(clock, sender=_Sender(), relay=relay)
    notifier.notify(world.store, world.payment.id)

    assert open_during_send == [("mail", 0), ("relay", 0)]
    payment = world.store.payment(world.payment.id)
    assert payment.email_notification_sent is True
    assert payment.webhook_notification_sent is True

"""Tests for PaymentSessionManager transitions."""

from __future__ import annotations

import asyncio

import pytest

from conftest import ADDRESS_0, SELLER, START_MS, run
from errors import (
    SessionExpiredError,
    SessionNotFoundError,
    SessionNotPendingError,
    SessionStillActiveError,
)
from models import Product, STATUS_EXPIRED, STATUS_PAID, STATUS_PENDING

TTL = 15 * 60 * 1000
TX_A = "0x" + "a" * 64
TX_B = "0x" + "b" * 64


def create(manager, amount="5000000", **kwargs):
    return run(manager.create_session(SELLER, amount=amount, **kwargs))


def test_create_session(manager):
    session = create(manager)

    assert session.status == STATUS_PENDING
    assert session.created_at == START_MS
    assert session.expires_at == START_MS + TTL
    assert session.session_id.startswith(f"brewfi_{START_MS}_")
    assert run(manager.get_session(session.session_id)) == session


def test_create_session_from_product(manager):
    product = Product(product_id=3, name="Cortado", price=4_500_000, reward_ratio=10**18)
    session = create(manager, amount=None, product=product)

    assert session.amount == "4500000"
    assert session.product_id == 3
    assert session.product_name == "Cortado"


@pytest.mark.parametrize("amount", [None, "", "0", "-5", "5.0", "abc"])
def test_create_session_rejects_bad_amounts(manager, amount):
    with pytest.raises(ValueError):
        create(manager, amount=amount)


def test_create_session_rejects_bad_address(manager):
    with pytest.raises(ValueError):
        run(manager.create_session("0x1234", amount="1"))


def test_mark_paid_at_last_valid_millisecond(manager, clock):
    session = create(manager)
    clock.advance(TTL - 1)

    paid = run(manager.mark_paid(session.session_id, TX_A, ADDRESS_0, "USDC", "5000000"))

    assert paid.status == STATUS_PAID
    assert paid.payment_tx_hash == TX_A
    assert paid.buyer_address == ADDRESS_0
    assert paid.payment_method == "USDC"


def test_mark_paid_at_expiry_expires_instead(manager, clock):
    session = create(manager)
    clock.advance(TTL)

    with pytest.raises(SessionExpiredError):
        run(manager.mark_paid(session.session_id, TX_A, ADDRESS_0, "USDC"))

    assert run(manager.get_session(session.session_id)).status == STATUS_EXPIRED


def test_terminal_status_is_final(manager, clock):
    session = create(manager)
    run(manager.mark_paid(session.session_id, TX_A, ADDRESS_0, "USDT"))
    clock.advance(TTL + 1)

    with pytest.raises(SessionNotPendingError):
        run(manager.mark_expired(session.session_id))
    with pytest.raises(SessionNotPendingError):
        run(manager.mark_paid(session.session_id, TX_B, ADDRESS_0, "USDC"))

    stored = run(manager.get_session(session.session_id))
    assert stored.status == STATUS_PAID
    assert stored.payment_tx_hash == TX_A


def test_mark_expired_before_ttl(manager, clock):
    session = create(manager)
    clock.advance(TTL - 1)

    with pytest.raises(SessionStillActiveError) as exc:
        run(manager.mark_expired(session.session_id))
    assert exc.value.retryable

    clock.advance(1)
    assert run(manager.mark_expired(session.session_id)).status == STATUS_EXPIRED


def test_unknown_session(manager):
    with pytest.raises(SessionNotFoundError):
        run(manager.mark_paid("brewfi_1_000000000000", TX_A, ADDRESS_0, "USDC"))
    assert run(manager.refresh_status("brewfi_1_000000000000")) is None


def test_mark_paid_validates_inputs(manager):
    session = create(manager)
    with pytest.raises(ValueError):
        run(manager.mark_paid(session.session_id, TX_A, ADDRESS_0, "DOGE"))
    with pytest.raises(ValueError):
        run(manager.mark_paid(session.session_id, TX_A, "not-an-address", "USDC"))


def test_amount_mismatch_is_logged(manager, caplog):
    session = create(manager)
    run(manager.mark_paid(session.session_id, TX_A, ADDRESS_0, "USDC", "1"))
    assert "requested 5000000" in caplog.text


def test_concurrent_writers_exactly_one_wins(manager, clock):
    session = create(manager)
    clock.advance(TTL)

    async def race():
        return await asyncio.gather(
            manager.mark_paid(session.session_id, TX_A, ADDRESS_0, "USDC"),
            manager.mark_expired(session.session_id),
            manager.mark_paid(session.session_id, TX_B, ADDRESS_0, "USDT"),
            return_exceptions=True,
        )

    results = run(race())

    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) <= 1
    assert run(manager.get_session(session.session_id)).status == STATUS_EXPIRED
    assert sum(isinstance(r, SessionNotPendingError) for r in results) >= 1


def test_concurrent_payments_exactly_one_recorded(manager):
    session = create(manager)

    async def race():
        return await asyncio.gather(
            *(manager.mark_paid(session.session_id, tx, ADDRESS_0, "USDC") for tx in (TX_A, TX_B)),
            return_exceptions=True,
        )

    results = run(race())

    paid = [r for r in results if not isinstance(r, Exception)]
    assert len(paid) == 1
    assert isinstance([r for r in results if isinstance(r, Exception)][0], SessionNotPendingError)
    assert run(manager.get_session(session.session_id)).payment_tx_hash == paid[0].payment_tx_hash


def test_refresh_status_expires_due_sessions(manager, clock):
    session = create(manager)
    assert run(manager.refresh_status(session.session_id)).status == STATUS_PENDING

    clock.advance(TTL)
    assert run(manager.refresh_status(session.session_id)).status == STATUS_EXPIRED


def test_expire_due_sessions_sweep(manager, clock):
    old = create(manager)
    clock.advance(TTL // 2)
    fresh = create(manager)
    clock.advance(TTL // 2)

    expired = run(manager.expire_due_sessions())

    assert [s.session_id for s in expired] == [old.session_id]
    assert run(manager.get_session(fresh.session_id)).status == STATUS_PENDING


def test_every_transition_is_published(manager, events, clock):
    session = create(manager)
    seen = []
    events.subscribe(session.session_id, lambda s: seen.append(s.status))

    run(manager.mark_paid(session.session_id, TX_A, ADDRESS_0, "USDC"))
    clock.advance(1)
    notified = run(manager.mark_notified(session.session_id))

    assert seen == [STATUS_PAID, STATUS_PAID]
    assert notified.notified_at == START_MS + 1

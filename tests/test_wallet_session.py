"""Tests for SeedVault storage and the user-scoped WalletSession."""

from __future__ import annotations

import asyncio
import json

import pytest

from conftest import ADDRESS_0, ADDRESS_1, SELLER, TEST_MNEMONIC, USDC, run
from errors import TransactionFailedError, WalletExistsError, WalletNotReadyError
from services.contracts import encode_approve
from wallet.vault import SeedVault, WalletRow
from wallet.session import WalletSession


def seeded_vault(tmp_path, password=None):
    vault = SeedVault(tmp_path / "wallets", password=password) if password else SeedVault(tmp_path / "wallets")
    run(vault.upsert(WalletRow(user_id="alice", seed_phrase=TEST_MNEMONIC)))
    return vault


def test_fetch_unknown_user_returns_none(tmp_path):
    assert run(SeedVault(tmp_path).fetch("nobody")) is None


def test_create_wallet_refuses_to_overwrite(tmp_path):
    vault = SeedVault(tmp_path)
    row = run(vault.create_wallet("bob"))
    assert len(row.seed_phrase.split()) == 12
    assert row.created_at is not None

    with pytest.raises(WalletExistsError):
        run(vault.create_wallet("bob"))
    assert run(vault.fetch("bob")).seed_phrase == row.seed_phrase


def test_encrypted_vault_keeps_plaintext_off_disk(tmp_path):
    vault = seeded_vault(tmp_path, password="hunter2")

    on_disk = (tmp_path / "wallets" / "vault.json").read_text()
    assert "junk" not in on_disk
    assert json.loads(on_disk)["wallets"][0]["encrypted"] is True

    reopened = SeedVault(tmp_path / "wallets", password="hunter2")
    assert run(reopened.fetch("alice")).seed_phrase == TEST_MNEMONIC

    wrong = SeedVault(tmp_path / "wallets", password="nope")
    with pytest.raises(ValueError):
        run(wrong.fetch("alice"))


def test_update_primary_account(tmp_path):
    vault = seeded_vault(tmp_path)
    run(vault.update_primary_account("alice", ADDRESS_0))
    assert run(vault.fetch("alice")).primary_account == ADDRESS_0

    with pytest.raises(WalletNotReadyError):
        run(vault.update_primary_account("carol", ADDRESS_0))


def test_open_without_wallet(tmp_path, chain):
    session = WalletSession("nobody", SeedVault(tmp_path), chain)
    assert run(session.open()) is False
    assert not session.is_ready
    with pytest.raises(WalletNotReadyError):
        session.service


def test_open_refreshes_and_stores_primary_account(tmp_path, chain):
    vault = seeded_vault(tmp_path)
    chain.set_token(USDC, ADDRESS_0, 3_000_000)
    session = WalletSession("alice", vault, chain, token_addresses=[USDC])

    assert run(session.open()) is True
    assert session.primary_account.address == ADDRESS_0
    assert session.cache.token_balance(0, USDC) == 3_000_000
    assert run(vault.fetch("alice")).primary_account == ADDRESS_0


def test_create_wallet_through_session(tmp_path, chain):
    vault = SeedVault(tmp_path)
    session = WalletSession("dave", vault, chain)

    address = run(session.create_wallet())

    assert session.is_ready
    assert run(vault.fetch("dave")).primary_account == address


def test_mutation_waits_then_refreshes(tmp_path, chain):
    session = WalletSession("alice", seeded_vault(tmp_path), chain)
    run(session.open())
    chain.calls.clear()

    result = run(session.send_native(0, SELLER, 10**15))

    assert ("wait", result.hash) in chain.calls
    assert chain.calls.index(("send", result.hash)) < chain.calls.index(("wait", result.hash))


def test_confirmation_timeout_still_refreshes(tmp_path, chain):
    session = WalletSession("alice", seeded_vault(tmp_path), chain)
    run(session.open())
    chain.wait_outcomes = ["timeout"]
    before = session.cache.refreshed_at

    result = run(session.send_native(0, SELLER, 10**15))

    assert chain.sent == [result.hash]
    assert session.cache.refreshed_at is not None
    assert session.cache.refreshed_at >= before


def test_refresh_failure_is_logged_not_raised(tmp_path, chain, caplog):
    session = WalletSession("alice", seeded_vault(tmp_path), chain)
    run(session.open())
    chain.fail_reads = True

    accounts = run(session.refresh())

    assert accounts[0].address == ADDRESS_0
    assert "Balance refresh failed" in caplog.text


def test_close_drops_key_material(tmp_path, chain):
    session = WalletSession("alice", seeded_vault(tmp_path), chain)
    run(session.open())
    service = session.service

    run(session.close())

    assert service.is_disposed
    assert not session.is_ready


def test_call_contract_tracks_new_index(tmp_path, chain):
    chain.fund(ADDRESS_1)
    session = WalletSession("alice", seeded_vault(tmp_path), chain)
    run(session.open())
    data = encode_approve(SELLER, 5_000_000)

    result = run(session.call_contract(1, USDC, data))

    assert chain.sent == [result.hash]
    assert chain.estimates[-1]["data"] == data
    assert [a.index for a in session.accounts] == [0, 1]
    assert session.accounts[1].address == ADDRESS_1


def test_concurrent_create_wallet_keeps_first_secret(tmp_path):
    vault = SeedVault(tmp_path)

    async def onboard_twice():
        return await asyncio.gather(
            vault.create_wallet("erin"),
            vault.create_wallet("erin"),
            return_exceptions=True,
        )

    results = run(onboard_twice())

    created = [r for r in results if isinstance(r, WalletRow)]
    assert len(created) == 1
    assert sum(isinstance(r, WalletExistsError) for r in results) == 1
    assert run(vault.fetch("erin")).seed_phrase == created[0].seed_phrase
    reopened = SeedVault(tmp_path)
    assert run(reopened.fetch("erin")).seed_phrase == created[0].seed_phrase


def test_reverted_transaction_still_refreshes(tmp_path, chain):
    session = WalletSession("alice", seeded_vault(tmp_path), chain)
    run(session.open())
    chain.wait_outcomes = ["revert"]
    chain.fund(ADDRESS_0, 5 * 10**17)

    with pytest.raises(TransactionFailedError):
        run(session.send_native(0, SELLER, 10**15))

    assert len(chain.sent) == 1
    assert session.primary_account.native_balance == 5 * 10**17

"""Tests for ContractReader and the calldata encoders."""

from __future__ import annotations

import pytest

from conftest import ADDRESS_0, PURCHASE_CONTRACT, SELLER, USDC, run
from services.contracts import (
    ContractReader,
    encode_approve,
    encode_mint,
    encode_purchase,
    encode_transfer,
)


def test_encoders_use_erc20_selectors():
    approve = encode_approve(SELLER, 5_000_000)
    assert approve.startswith("0x095ea7b3")
    assert approve.endswith(hex(5_000_000)[2:].rjust(64, "0"))
    assert encode_transfer(SELLER, 1).startswith("0xa9059cbb")
    assert SELLER[2:].lower() in encode_mint(SELLER, 1).lower()


def test_purchase_encoder_per_method():
    usdc = encode_purchase("USDC", 1)
    usdt = encode_purchase("USDT", 1)
    assert usdc[:10] != usdt[:10]
    assert usdc.endswith("0" * 63 + "1")
    with pytest.raises(ValueError):
        encode_purchase("AVAX", 1)


def test_encoders_reject_bad_addresses():
    with pytest.raises(ValueError):
        encode_approve("0xnope", 1)


def test_product_reads(chain):
    chain.products[0] = ("Espresso", 3_000_000, 10**18, True)
    chain.products[1] = ("Seasonal", 6_000_000, 2 * 10**18, False)
    reader = ContractReader(chain, PURCHASE_CONTRACT)

    products = run(reader.get_all_products())
    assert [p.name for p in products] == ["Espresso", "Seasonal"]
    assert [p.product_id for p in run(reader.get_active_products())] == [0]
    assert run(reader.get_product_count()) == 2
    assert run(reader.get_product(1)).price == 6_000_000
    assert run(reader.get_product(7)) is None


def test_allowance_defaults_to_purchase_contract(chain):
    chain.set_allowance(USDC, ADDRESS_0, PURCHASE_CONTRACT, 42)
    chain.set_token(USDC, ADDRESS_0, 9)
    reader = ContractReader(chain, PURCHASE_CONTRACT)

    assert run(reader.get_allowance(USDC, ADDRESS_0)) == 42
    assert run(reader.get_allowance(USDC, ADDRESS_0, SELLER)) == 0
    assert run(reader.get_token_balance(USDC, ADDRESS_0)) == 9
    assert run(reader.get_native_balance(ADDRESS_0)) == 10**18

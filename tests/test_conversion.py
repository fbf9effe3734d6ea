from fractions import Fraction

import pytest
from solders.pubkey import Pubkey

from accounts import State, TokenAccount
from conversion import (
    U64_MAX,
    ExchangeRate,
    convert_orca_to_xorca,
    convert_xorca_to_orca,
    get_exchange_rate,
    quote_stake,
    quote_unstake,
)
from errors import ArithmeticOverflow, ConversionError, InvalidState


def make_state(escrowed: int, cool_down: int = 3600) -> State:
    return State(
        bump=255,
        vault_bump=255,
        escrowed_orca_amount=escrowed,
        cool_down_period_s=cool_down,
        update_authority=Pubkey.default(),
    )


def make_vault(amount: int) -> TokenAccount:
    return TokenAccount(mint=Pubkey.default(), owner=Pubkey.default(), amount=amount)


def test_orca_to_xorca_bootstrap_is_identity():
    assert convert_orca_to_xorca(10, 0, 0) == 10
    assert convert_orca_to_xorca(10, 0, 500) == 10
    assert convert_orca_to_xorca(10, 500, 0) == 10


def test_orca_to_xorca_applies_virtual_offsets():
    # supply' = 800_100, reserve' = 900_100
    assert convert_orca_to_xorca(1_000_000, 900_000, 800_000) == 1_000_000 * 800_100 // 900_100
    assert convert_orca_to_xorca(1_000_000, 900_000, 800_000) == 888_901


def test_orca_to_xorca_nominal_large_values():
    out = convert_orca_to_xorca(100_000_000_000, 400_000_000_000, 200_000_000_000)
    assert out == 50_000_000_012


def test_xorca_to_orca_nominal_large_values():
    out = convert_xorca_to_orca(50_000_000_000, 500_000_000_000, 250_000_000_000)
    assert out == 99_999_999_980


def test_zero_in_zero_out():
    assert convert_orca_to_xorca(0, 123, 456) == 0
    assert convert_xorca_to_orca(0, 123, 456) == 0


@pytest.mark.parametrize("reserve,supply", [(0, 0), (0, 10), (10, 0)])
def test_xorca_to_orca_empty_reserve_is_invalid_state(reserve, supply):
    with pytest.raises(InvalidState):
        convert_xorca_to_orca(10, reserve, supply)


def test_invalid_state_is_a_conversion_error():
    with pytest.raises(ConversionError):
        convert_xorca_to_orca(1, 0, 0)


def test_round_trip_never_overstates():
    cases = [
        (1, 1, 1),
        (7, 3, 1_000_000),
        (1_000_000, 900_000, 800_000),
        (999_999_999, 1_000_000_007, 3),
        (U64_MAX // 4, 10 ** 12, 10 ** 12 + 17),
        (12_345, 1, 1),
    ]
    for amount, reserve, supply in cases:
        xorca = convert_orca_to_xorca(amount, reserve, supply)
        back = convert_xorca_to_orca(xorca, reserve, supply)
        assert back <= amount, (amount, reserve, supply)


def test_monotonic_in_amount():
    prev = -1
    for amount in range(0, 2_000, 37):
        out = convert_orca_to_xorca(amount, 1_000, 900)
        assert out >= prev
        prev = out


def test_product_beyond_64_bits_is_exact():
    # amount * supply' exceeds 2**64 but the quotient fits
    amount = 2 ** 63
    out = convert_orca_to_xorca(amount, 2 ** 40, 2 ** 40)
    assert out == amount * (2 ** 40 + 100) // (2 ** 40 + 100)


def test_result_overflow():
    with pytest.raises(ArithmeticOverflow):
        convert_orca_to_xorca(U64_MAX, 1, U64_MAX)


def test_input_out_of_range():
    with pytest.raises(ArithmeticOverflow):
        convert_orca_to_xorca(-1, 10, 10)
    with pytest.raises(ArithmeticOverflow):
        convert_xorca_to_orca(1, U64_MAX + 1, 10)


def test_exchange_rate_is_unreduced():
    rate = get_exchange_rate(make_state(escrowed=100), make_vault(1_100), 900)
    assert rate == ExchangeRate(numerator=1_000, denominator=900)
    assert rate.as_fraction() == Fraction(10, 9)


def test_exchange_rate_zero_supply():
    rate = get_exchange_rate(make_state(escrowed=0), make_vault(0), 0)
    assert (rate.numerator, rate.denominator) == (0, 0)
    assert rate.as_fraction() is None


def test_exchange_rate_vault_below_escrow():
    with pytest.raises(InvalidState):
        get_exchange_rate(make_state(escrowed=2_000), make_vault(1_000), 900)


def test_quotes_use_non_escrowed_reserve():
    state = make_state(escrowed=3_000_000_000)
    vault = make_vault(8_000_000_000)
    supply = 10_000_000_000
    non_escrowed = 5_000_000_000
    assert quote_stake(state, vault, supply, 1_000) == convert_orca_to_xorca(1_000, non_escrowed, supply)
    assert quote_unstake(state, vault, supply, 1_000) == convert_xorca_to_orca(1_000, non_escrowed, supply)

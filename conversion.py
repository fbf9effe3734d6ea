"""ORCA <-> xORCA conversion mirroring the on-chain staking math.

Both directions add fixed virtual amounts to the xORCA supply and to the
non-escrowed ORCA reserve before dividing. This keeps the price stable when
real balances are tiny (vault-inflation defence). Division floors, so no
conversion ever rounds in the requester's favour.

Python ints do not overflow, so the multiply-before-divide step is exact.
Inputs and results are still bounded to u64, like the program's checked
arithmetic.
"""
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional
import logging

from accounts import State, TokenAccount
from errors import ArithmeticOverflow, InvalidState

logger = logging.getLogger(__name__)

VIRTUAL_XORCA_SUPPLY = 100
VIRTUAL_NON_ESCROWED_ORCA_AMOUNT = 100

U64_MAX = 2 ** 64 - 1


@dataclass(frozen=True)
class ExchangeRate:
    """Exact, unreduced ratio: `numerator` ORCA backs `denominator` xORCA."""
    numerator: int
    denominator: int

    def as_fraction(self) -> Optional[Fraction]:
        if self.denominator == 0:
            return None
        return Fraction(self.numerator, self.denominator)


def _check_u64(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise ArithmeticOverflow(f"{name} out of u64 range: {value}")
    return value


def _apply_virtual_offsets(non_escrowed_orca_amount: int, xorca_supply: int):
    return (
        non_escrowed_orca_amount + VIRTUAL_NON_ESCROWED_ORCA_AMOUNT,
        xorca_supply + VIRTUAL_XORCA_SUPPLY,
    )


def convert_orca_to_xorca(
    orca_amount_to_convert: int,
    non_escrowed_orca_amount: int,
    xorca_supply: int,
) -> int:
    """Return the xORCA minted for staking `orca_amount_to_convert` ORCA.

    With no xORCA outstanding (or an empty reserve) the first stake defines
    the rate and converts 1:1.
    """
    _check_u64("orca_amount_to_convert", orca_amount_to_convert)
    _check_u64("non_escrowed_orca_amount", non_escrowed_orca_amount)
    _check_u64("xorca_supply", xorca_supply)

    if xorca_supply == 0 or non_escrowed_orca_amount == 0:
        return orca_amount_to_convert

    reserve, supply = _apply_virtual_offsets(non_escrowed_orca_amount, xorca_supply)
    out = orca_amount_to_convert * supply // reserve
    return _check_u64("xorca_out", out)


def convert_xorca_to_orca(
    xorca_amount_to_convert: int,
    non_escrowed_orca_amount: int,
    xorca_supply: int,
) -> int:
    """Return the ORCA released for unstaking `xorca_amount_to_convert` xORCA.

    Raises InvalidState when there is no supply or no reserve to redeem against.
    """
    _check_u64("xorca_amount_to_convert", xorca_amount_to_convert)
    _check_u64("non_escrowed_orca_amount", non_escrowed_orca_amount)
    _check_u64("xorca_supply", xorca_supply)

    if xorca_supply == 0 or non_escrowed_orca_amount == 0:
        raise InvalidState(
            f"cannot redeem xORCA: supply={xorca_supply} non_escrowed={non_escrowed_orca_amount}"
        )

    reserve, supply = _apply_virtual_offsets(non_escrowed_orca_amount, xorca_supply)
    out = xorca_amount_to_convert * reserve // supply
    return _check_u64("orca_out", out)


def non_escrowed_orca_amount(state: State, vault: TokenAccount) -> int:
    """ORCA in the vault that is not reserved for pending withdrawals."""
    if vault.amount < state.escrowed_orca_amount:
        raise InvalidState(
            f"vault amount {vault.amount} is less than escrowed amount {state.escrowed_orca_amount}"
        )
    return vault.amount - state.escrowed_orca_amount


def get_exchange_rate(state: State, vault: TokenAccount, xorca_supply: int) -> ExchangeRate:
    rate = ExchangeRate(
        numerator=non_escrowed_orca_amount(state, vault),
        denominator=_check_u64("xorca_supply", xorca_supply),
    )
    logger.debug("conversion.get_exchange_rate numerator=%d denominator=%d", rate.numerator, rate.denominator)
    return rate


def quote_stake(state: State, vault: TokenAccount, xorca_supply: int, orca_amount: int) -> int:
    return convert_orca_to_xorca(orca_amount, non_escrowed_orca_amount(state, vault), xorca_supply)


def quote_unstake(state: State, vault: TokenAccount, xorca_supply: int, xorca_amount: int) -> int:
    return convert_xorca_to_orca(xorca_amount, non_escrowed_orca_amount(state, vault), xorca_supply)

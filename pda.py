"""Program-derived addresses for the staking program.

Seeds:
    - State: ["state"] under the staking program
    - Vault: [state, token_program, orca_mint] under the associated-token program
    - PendingWithdraw: ["pending_withdraw", staker, withdraw_index] under the staking program
"""
import logging
from typing import Callable, Optional, Sequence, Tuple, Union

from solders.pubkey import Pubkey

import config
from errors import AddressDerivationError, InvalidArgument

logger = logging.getLogger(__name__)

STATE_SEED = b"state"
PENDING_WITHDRAW_SEED = b"pending_withdraw"

MAX_SEEDS = 16
MAX_SEED_LEN = 32
WITHDRAW_INDEX_MAX = 255

AddressLike = Union[Pubkey, str]
DeriveFn = Callable[[Sequence[bytes], Pubkey], Tuple[Pubkey, int]]


def to_pubkey(value: AddressLike) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(str(value))
    except Exception as e:
        raise InvalidArgument(f"invalid address {value!r}: {e}") from e


def derive_address(
    program_id: AddressLike,
    seeds: Sequence[bytes],
    derive: DeriveFn = Pubkey.find_program_address,
) -> Tuple[Pubkey, int]:
    """Derive `(address, bump)` for `seeds` under `program_id`.

    `derive` is the find-program-address primitive; it searches bumps from
    255 down to 0 for an off-curve address. Failure is fatal for the caller.

    Seed count and length are checked here first because solders'
    `find_program_address` panics on them rather than raising. Once they
    pass, the real primitive only fails if all 256 bumps land on the curve
    (odds about 2**-256), so `AddressDerivationError` in practice comes
    from an injected `derive` that raises `ValueError` or `RuntimeError`.
    """
    if len(seeds) > MAX_SEEDS - 1:
        raise InvalidArgument(f"too many seeds: {len(seeds)}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InvalidArgument(f"seed longer than {MAX_SEED_LEN} bytes: {len(seed)}")

    program_pk = to_pubkey(program_id)
    try:
        address, bump = derive([bytes(s) for s in seeds], program_pk)
    except (ValueError, RuntimeError) as e:
        raise AddressDerivationError(f"no valid bump for seeds under {program_pk}: {e}") from e
    logger.debug("pda.derive_address program=%s address=%s bump=%d", program_pk, address, bump)
    return address, bump


def derive_state_address(
    program_id: Optional[AddressLike] = None,
    derive: DeriveFn = Pubkey.find_program_address,
) -> Tuple[Pubkey, int]:
    if program_id is None:
        program_id = config.XORCA_STAKING_PROGRAM_ID
    return derive_address(program_id, [STATE_SEED], derive=derive)


def derive_vault_address(
    state: AddressLike,
    token_program: Optional[AddressLike] = None,
    mint: Optional[AddressLike] = None,
    derive: DeriveFn = Pubkey.find_program_address,
) -> Tuple[Pubkey, int]:
    """The vault is the state account's associated token account for ORCA."""
    if token_program is None:
        token_program = config.TOKEN_PROGRAM_ID
    if mint is None:
        mint = config.ORCA_MINT
    seeds = [bytes(to_pubkey(state)), bytes(to_pubkey(token_program)), bytes(to_pubkey(mint))]
    return derive_address(config.ASSOCIATED_TOKEN_PROGRAM_ID, seeds, derive=derive)


def derive_pending_withdraw_address(
    staker: AddressLike,
    withdraw_index: int,
    program_id: Optional[AddressLike] = None,
    derive: DeriveFn = Pubkey.find_program_address,
) -> Tuple[Pubkey, int]:
    if isinstance(withdraw_index, bool) or not isinstance(withdraw_index, int):
        raise InvalidArgument(f"withdraw index must be an integer, got {withdraw_index!r}")
    if not 0 <= withdraw_index <= WITHDRAW_INDEX_MAX:
        raise InvalidArgument(f"withdraw index out of range [0, {WITHDRAW_INDEX_MAX}]: {withdraw_index}")
    if program_id is None:
        program_id = config.XORCA_STAKING_PROGRAM_ID
    seeds = [PENDING_WITHDRAW_SEED, bytes(to_pubkey(staker)), bytes([withdraw_index])]
    return derive_address(program_id, seeds, derive=derive)

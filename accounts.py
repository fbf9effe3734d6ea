"""Fixed-layout decoders for the staking program's accounts.

Every record kind has its own parser with explicit offsets. Program-owned
accounts (State, PendingWithdraw) start with a one-byte discriminator that
must match the expected tag; SPL token accounts and mints carry no tag and
are only length-checked. All multi-byte integers are little-endian.

The on-chain accounts are allocated larger than the fields read here; any
trailing bytes are ignored.

`make_*_bytes` helpers build synthetic account data in the same layout. They
are used by the tests and by anyone who needs fixture accounts.
"""
from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from solders.pubkey import Pubkey

from errors import DecodeError


class AccountDiscriminator(enum.IntEnum):
    UNKNOWN = 0
    STATE = 1
    PENDING_WITHDRAW = 2
    CLOSED = 3


class AccountKind(enum.Enum):
    STATE = "state"
    PENDING_WITHDRAW = "pending_withdraw"
    TOKEN_ACCOUNT = "token_account"
    MINT = "mint"


# State layout
_STATE_OFF_BUMP = 6
_STATE_OFF_VAULT_BUMP = 7
_STATE_OFF_ESCROWED = 8
_STATE_OFF_COOL_DOWN = 16
_STATE_OFF_UPDATE_AUTHORITY = 24
STATE_LEN = 56

# PendingWithdraw layout
_PW_OFF_BUMP = 6
_PW_OFF_INDEX = 7
_PW_OFF_UNSTAKER = 8
_PW_OFF_AMOUNT = 40
_PW_OFF_TIMESTAMP = 48
PENDING_WITHDRAW_LEN = 56

# SPL token account layout
_TA_OFF_MINT = 0
_TA_OFF_OWNER = 32
_TA_OFF_AMOUNT = 64
TOKEN_ACCOUNT_LEN = 165

# SPL mint layout
_MINT_OFF_AUTHORITY_TAG = 0
_MINT_OFF_AUTHORITY = 4
_MINT_OFF_SUPPLY = 36
_MINT_OFF_DECIMALS = 44
_MINT_OFF_INITIALIZED = 45
_MINT_OFF_FREEZE_TAG = 46
_MINT_OFF_FREEZE = 50
MINT_LEN = 82


@dataclass(frozen=True)
class State:
    bump: int
    vault_bump: int
    escrowed_orca_amount: int
    cool_down_period_s: int
    update_authority: Pubkey
    discriminator: int = AccountDiscriminator.STATE


@dataclass(frozen=True)
class PendingWithdraw:
    bump: int
    withdraw_index: int
    unstaker: Pubkey
    withdrawable_orca_amount: int
    withdrawable_timestamp: int
    discriminator: int = AccountDiscriminator.PENDING_WITHDRAW


@dataclass(frozen=True)
class TokenAccount:
    mint: Pubkey
    owner: Pubkey
    amount: int


@dataclass(frozen=True)
class Mint:
    supply: int
    decimals: int
    is_initialized: bool
    mint_authority: Optional[Pubkey] = None
    freeze_authority: Optional[Pubkey] = None


Record = Union[State, PendingWithdraw, TokenAccount, Mint]


def _pubkey_at(raw: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(bytes(raw[offset:offset + 32]))


def _check(raw: bytes, min_len: int, what: str, tag: Optional[int] = None) -> None:
    if raw is None or len(raw) < min_len:
        got = 0 if raw is None else len(raw)
        raise DecodeError(f"{what}: expected at least {min_len} bytes, got {got}")
    if tag is not None and raw[0] != tag:
        raise DecodeError(f"{what}: discriminator {raw[0]} does not match expected {int(tag)}")


def decode_state(raw: bytes) -> State:
    _check(raw, STATE_LEN, "State", AccountDiscriminator.STATE)
    return State(
        bump=raw[_STATE_OFF_BUMP],
        vault_bump=raw[_STATE_OFF_VAULT_BUMP],
        escrowed_orca_amount=struct.unpack_from("<Q", raw, _STATE_OFF_ESCROWED)[0],
        cool_down_period_s=struct.unpack_from("<q", raw, _STATE_OFF_COOL_DOWN)[0],
        update_authority=_pubkey_at(raw, _STATE_OFF_UPDATE_AUTHORITY),
    )


def decode_pending_withdraw(raw: bytes) -> PendingWithdraw:
    _check(raw, PENDING_WITHDRAW_LEN, "PendingWithdraw", AccountDiscriminator.PENDING_WITHDRAW)
    return PendingWithdraw(
        bump=raw[_PW_OFF_BUMP],
        withdraw_index=raw[_PW_OFF_INDEX],
        unstaker=_pubkey_at(raw, _PW_OFF_UNSTAKER),
        withdrawable_orca_amount=struct.unpack_from("<Q", raw, _PW_OFF_AMOUNT)[0],
        withdrawable_timestamp=struct.unpack_from("<q", raw, _PW_OFF_TIMESTAMP)[0],
    )


def decode_token_account(raw: bytes) -> TokenAccount:
    _check(raw, TOKEN_ACCOUNT_LEN, "TokenAccount")
    return TokenAccount(
        mint=_pubkey_at(raw, _TA_OFF_MINT),
        owner=_pubkey_at(raw, _TA_OFF_OWNER),
        amount=struct.unpack_from("<Q", raw, _TA_OFF_AMOUNT)[0],
    )


def _coption_pubkey(raw: bytes, tag_off: int, key_off: int) -> Optional[Pubkey]:
    tag = struct.unpack_from("<I", raw, tag_off)[0]
    if tag == 0:
        return None
    if tag != 1:
        raise DecodeError(f"Mint: invalid COption tag {tag} at offset {tag_off}")
    return _pubkey_at(raw, key_off)


def decode_mint(raw: bytes) -> Mint:
    _check(raw, MINT_LEN, "Mint")
    return Mint(
        supply=struct.unpack_from("<Q", raw, _MINT_OFF_SUPPLY)[0],
        decimals=raw[_MINT_OFF_DECIMALS],
        is_initialized=bool(raw[_MINT_OFF_INITIALIZED]),
        mint_authority=_coption_pubkey(raw, _MINT_OFF_AUTHORITY_TAG, _MINT_OFF_AUTHORITY),
        freeze_authority=_coption_pubkey(raw, _MINT_OFF_FREEZE_TAG, _MINT_OFF_FREEZE),
    )


_DECODERS: Dict[AccountKind, Callable[[bytes], Record]] = {
    AccountKind.STATE: decode_state,
    AccountKind.PENDING_WITHDRAW: decode_pending_withdraw,
    AccountKind.TOKEN_ACCOUNT: decode_token_account,
    AccountKind.MINT: decode_mint,
}


def decode(raw: bytes, kind: AccountKind) -> Record:
    """Decode `raw` as the record layout for `kind`.

    Raises DecodeError if the buffer is shorter than the layout or the
    discriminator does not match.
    """
    try:
        decoder = _DECODERS[AccountKind(kind)]
    except ValueError:
        raise DecodeError(f"unknown account kind: {kind!r}") from None
    return decoder(raw)


def make_state_bytes(
    escrowed_orca_amount: int,
    cool_down_period_s: int,
    update_authority: Optional[Pubkey] = None,
    bump: int = 255,
    vault_bump: int = 255,
    discriminator: int = AccountDiscriminator.STATE,
    size: int = STATE_LEN,
) -> bytes:
    b = bytearray(max(size, STATE_LEN))
    b[0] = int(discriminator)
    b[_STATE_OFF_BUMP] = bump
    b[_STATE_OFF_VAULT_BUMP] = vault_bump
    struct.pack_into("<Q", b, _STATE_OFF_ESCROWED, int(escrowed_orca_amount))
    struct.pack_into("<q", b, _STATE_OFF_COOL_DOWN, int(cool_down_period_s))
    authority = update_authority if update_authority is not None else Pubkey.default()
    b[_STATE_OFF_UPDATE_AUTHORITY:_STATE_OFF_UPDATE_AUTHORITY + 32] = bytes(authority)
    return bytes(b)


def make_pending_withdraw_bytes(
    withdraw_index: int,
    unstaker: Pubkey,
    withdrawable_orca_amount: int,
    withdrawable_timestamp: int,
    bump: int = 255,
    discriminator: int = AccountDiscriminator.PENDING_WITHDRAW,
    size: int = PENDING_WITHDRAW_LEN,
) -> bytes:
    b = bytearray(max(size, PENDING_WITHDRAW_LEN))
    b[0] = int(discriminator)
    b[_PW_OFF_BUMP] = bump
    b[_PW_OFF_INDEX] = withdraw_index
    b[_PW_OFF_UNSTAKER:_PW_OFF_UNSTAKER + 32] = bytes(unstaker)
    struct.pack_into("<Q", b, _PW_OFF_AMOUNT, int(withdrawable_orca_amount))
    struct.pack_into("<q", b, _PW_OFF_TIMESTAMP, int(withdrawable_timestamp))
    return bytes(b)


def make_token_account_bytes(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    b = bytearray(TOKEN_ACCOUNT_LEN)
    b[_TA_OFF_MINT:_TA_OFF_MINT + 32] = bytes(mint)
    b[_TA_OFF_OWNER:_TA_OFF_OWNER + 32] = bytes(owner)
    struct.pack_into("<Q", b, _TA_OFF_AMOUNT, int(amount))
    # account state: Initialized
    b[108] = 1
    return bytes(b)


def make_mint_bytes(
    supply: int,
    decimals: int = 6,
    mint_authority: Optional[Pubkey] = None,
    freeze_authority: Optional[Pubkey] = None,
) -> bytes:
    b = bytearray(MINT_LEN)
    if mint_authority is not None:
        struct.pack_into("<I", b, _MINT_OFF_AUTHORITY_TAG, 1)
        b[_MINT_OFF_AUTHORITY:_MINT_OFF_AUTHORITY + 32] = bytes(mint_authority)
    struct.pack_into("<Q", b, _MINT_OFF_SUPPLY, int(supply))
    b[_MINT_OFF_DECIMALS] = decimals
    b[_MINT_OFF_INITIALIZED] = 1
    if freeze_authority is not None:
        struct.pack_into("<I", b, _MINT_OFF_FREEZE_TAG, 1)
        b[_MINT_OFF_FREEZE:_MINT_OFF_FREEZE + 32] = bytes(freeze_authority)
    return bytes(b)

# rpc.py
from typing import List, Optional, Sequence
from base64 import b64decode
import asyncio
import logging
import time

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

import config
from accounts import Mint, State, TokenAccount, decode_mint, decode_state, decode_token_account
from conversion import ExchangeRate, get_exchange_rate
from errors import AccountNotFound
from pda import AddressLike, derive_state_address, derive_vault_address, to_pubkey
from scanner import (
    PendingWithdrawView,
    pending_withdraw_addresses,
    scan_pending_withdrawals,
    scan_pending_withdrawals_async,
    validate_cool_down,
    validate_search_bound,
)

logger = logging.getLogger(__name__)

DEFAULT_RPC = config.DEFAULT_RPC_URL
MAX_RETRIES = 3
# getMultipleAccounts accepts at most 100 keys per request
MULTIPLE_ACCOUNTS_CHUNK = 100


def get_client(rpc_url: Optional[str] = None) -> Client:
    rpc_url = rpc_url or config.RPC_URL
    logger.debug("rpc.get_client creating Client for %s", rpc_url)
    return Client(rpc_url)


def get_async_client(rpc_url: Optional[str] = None) -> AsyncClient:
    rpc_url = rpc_url or config.RPC_URL
    logger.debug("rpc.get_async_client creating AsyncClient for %s", rpc_url)
    return AsyncClient(rpc_url)


def _account_data(value) -> Optional[bytes]:
    """Extract raw bytes from an account value.

    solders returns `data` as bytes; JSON-shaped responses carry
    `[base64, "base64"]`.
    """
    if value is None:
        return None
    data = getattr(value, "data", None)
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, (list, tuple)) and len(data) >= 1:
        data = data[0]
    if isinstance(data, str):
        return b64decode(data)
    return bytes(data)


def _backoff(attempt: int) -> float:
    return 0.5 * (2 ** (attempt - 1))


def _pad(values, n: int) -> list:
    values = list(values or [])
    if len(values) < n:
        values.extend([None] * (n - len(values)))
    return values[:n]


def fetch_account_bytes(client: Client, address: AddressLike, max_retries: int = MAX_RETRIES) -> Optional[bytes]:
    """Return the account's raw data, or None if the account does not exist.

    RPC errors are retried with exponential backoff, then re-raised so a
    transport failure is never mistaken for a missing account.
    """
    pk = to_pubkey(address)
    for attempt in range(1, max_retries + 1):
        try:
            resp = client.get_account_info(pk)
            return _account_data(resp.value)
        except SolanaRpcException as e:
            if attempt == max_retries:
                raise
            backoff = _backoff(attempt)
            logger.warning("RPC error in fetch_account_bytes(%s), attempt %d/%d: %r; backing off %ss", pk, attempt, max_retries, e, backoff)
            time.sleep(backoff)
    return None


async def fetch_account_bytes_async(client: AsyncClient, address: AddressLike, max_retries: int = MAX_RETRIES) -> Optional[bytes]:
    pk = to_pubkey(address)
    for attempt in range(1, max_retries + 1):
        try:
            resp = await client.get_account_info(pk)
            return _account_data(resp.value)
        except SolanaRpcException as e:
            if attempt == max_retries:
                raise
            backoff = _backoff(attempt)
            logger.warning("RPC error in fetch_account_bytes_async(%s), attempt %d/%d: %r; backing off %ss", pk, attempt, max_retries, e, backoff)
            await asyncio.sleep(backoff)
    return None


def fetch_multiple_account_bytes(
    client: Client,
    addresses: Sequence[AddressLike],
    max_retries: int = MAX_RETRIES,
) -> List[Optional[bytes]]:
    """Batched `fetch_account_bytes`: one getMultipleAccounts call per chunk.

    The result lines up with `addresses`; missing accounts are None. Retries
    apply per chunk and a chunk that keeps failing re-raises.
    """
    pks = [to_pubkey(a) for a in addresses]
    out: List[Optional[bytes]] = []
    for start in range(0, len(pks), MULTIPLE_ACCOUNTS_CHUNK):
        chunk = pks[start:start + MULTIPLE_ACCOUNTS_CHUNK]
        for attempt in range(1, max_retries + 1):
            try:
                resp = client.get_multiple_accounts(chunk)
                break
            except SolanaRpcException as e:
                if attempt == max_retries:
                    raise
                backoff = _backoff(attempt)
                logger.warning("RPC error in fetch_multiple_account_bytes(%d keys), attempt %d/%d: %r; backing off %ss", len(chunk), attempt, max_retries, e, backoff)
                time.sleep(backoff)
        out.extend(_account_data(v) for v in _pad(resp.value, len(chunk)))
    logger.debug("rpc/fetch_multiple_account_bytes requested=%d found=%d", len(pks), sum(r is not None for r in out))
    return out


async def fetch_multiple_account_bytes_async(
    client: AsyncClient,
    addresses: Sequence[AddressLike],
    max_retries: int = MAX_RETRIES,
) -> List[Optional[bytes]]:
    pks = [to_pubkey(a) for a in addresses]
    out: List[Optional[bytes]] = []
    for start in range(0, len(pks), MULTIPLE_ACCOUNTS_CHUNK):
        chunk = pks[start:start + MULTIPLE_ACCOUNTS_CHUNK]
        for attempt in range(1, max_retries + 1):
            try:
                resp = await client.get_multiple_accounts(chunk)
                break
            except SolanaRpcException as e:
                if attempt == max_retries:
                    raise
                backoff = _backoff(attempt)
                logger.warning("RPC error in fetch_multiple_account_bytes_async(%d keys), attempt %d/%d: %r; backing off %ss", len(chunk), attempt, max_retries, e, backoff)
                await asyncio.sleep(backoff)
        out.extend(_account_data(v) for v in _pad(resp.value, len(chunk)))
    return out


def _require(client: Client, address: Pubkey, what: str) -> bytes:
    raw = fetch_account_bytes(client, address)
    if raw is None:
        raise AccountNotFound(what, address)
    return raw


def fetch_state(client: Client, program_id: Optional[AddressLike] = None) -> State:
    state_address, _ = derive_state_address(program_id)
    state = decode_state(_require(client, state_address, "state"))
    logger.debug(
        "rpc/fetch_state address=%s escrowed=%d cool_down=%d",
        state_address,
        state.escrowed_orca_amount,
        state.cool_down_period_s,
    )
    return state


def fetch_cool_down_period_s(client: Client, program_id: Optional[AddressLike] = None) -> int:
    return fetch_state(client, program_id).cool_down_period_s


def fetch_vault_state(client: Client, program_id: Optional[AddressLike] = None) -> TokenAccount:
    state_address, _ = derive_state_address(program_id)
    vault_address, _ = derive_vault_address(state_address)
    vault = decode_token_account(_require(client, vault_address, "vault"))
    logger.debug("rpc/fetch_vault_state address=%s amount=%d", vault_address, vault.amount)
    return vault


def fetch_mint(client: Client, mint_address: Optional[AddressLike] = None) -> Mint:
    if mint_address is None:
        mint_address = config.XORCA_MINT
    mint_pk = to_pubkey(mint_address)
    return decode_mint(_require(client, mint_pk, "mint"))


def fetch_xorca_mint_supply(client: Client, mint_address: Optional[AddressLike] = None) -> int:
    mint = fetch_mint(client, mint_address)
    logger.debug("rpc/fetch_xorca_mint_supply supply=%d decimals=%d", mint.supply, mint.decimals)
    return mint.supply


def fetch_staking_exchange_rate(client: Client, program_id: Optional[AddressLike] = None) -> ExchangeRate:
    state = fetch_state(client, program_id)
    vault = fetch_vault_state(client, program_id)
    supply = fetch_xorca_mint_supply(client)
    return get_exchange_rate(state, vault, supply)


def fetch_pending_withdraws_for_staker(
    client: Client,
    staker: AddressLike,
    search_bound: Optional[int] = None,
    cool_down_period_s: Optional[int] = None,
    now: Optional[int] = None,
    program_id: Optional[AddressLike] = None,
) -> List[PendingWithdrawView]:
    """Scan the staker's withdraw slots, fetching them in one batched read.

    Arguments are validated before any RPC call. The cooldown is read from
    the state account unless given.
    """
    staker_pk = to_pubkey(staker)
    if search_bound is None:
        search_bound = config.MAX_WITHDRAWALS_TO_SEARCH
    validate_search_bound(search_bound)
    if cool_down_period_s is not None:
        validate_cool_down(cool_down_period_s)
    addresses = [address for _, address in pending_withdraw_addresses(staker_pk, search_bound, program_id=program_id)]
    if cool_down_period_s is None:
        cool_down_period_s = fetch_cool_down_period_s(client, program_id)
    prefetched = dict(zip(addresses, fetch_multiple_account_bytes(client, addresses)))
    return scan_pending_withdrawals(
        staker_pk,
        prefetched.get,
        cool_down_period_s,
        search_bound=search_bound,
        now=now,
        program_id=program_id,
    )


async def fetch_pending_withdraws_for_staker_async(
    client: AsyncClient,
    staker: AddressLike,
    cool_down_period_s: int,
    search_bound: Optional[int] = None,
    now: Optional[int] = None,
    program_id: Optional[AddressLike] = None,
) -> List[PendingWithdrawView]:
    staker_pk = to_pubkey(staker)
    if search_bound is None:
        search_bound = config.MAX_WITHDRAWALS_TO_SEARCH
    validate_search_bound(search_bound)
    validate_cool_down(cool_down_period_s)
    addresses = [address for _, address in pending_withdraw_addresses(staker_pk, search_bound, program_id=program_id)]
    prefetched = dict(zip(addresses, await fetch_multiple_account_bytes_async(client, addresses)))

    async def lookup(address: Pubkey) -> Optional[bytes]:
        return prefetched.get(address)

    return await scan_pending_withdrawals_async(
        staker_pk,
        lookup,
        cool_down_period_s,
        search_bound=search_bound,
        now=now,
        program_id=program_id,
    )

import asyncio
import base64
from types import SimpleNamespace

import pytest
from solana.exceptions import SolanaRpcException
from solders.pubkey import Pubkey

import config
import rpc
from accounts import make_mint_bytes, make_pending_withdraw_bytes, make_state_bytes, make_token_account_bytes
from conversion import ExchangeRate
from errors import AccountNotFound, InvalidArgument, InvalidState
from pda import derive_pending_withdraw_address, derive_state_address, derive_vault_address

STAKER = Pubkey.from_string("9GJeoK3Qn2p8Rq6i7AbQm7x1SE7K75Eo3VdFUSf1xZ4i")
NOW = 1_700_000_000


def rpc_error():
    return SolanaRpcException(ConnectionError("connection reset"), None, None, "GetAccountInfo")


class FakeClient:
    """Answers get_account_info / get_multiple_accounts from a dict of address -> bytes."""

    def __init__(self, accounts, b64=False, failures=0):
        self.accounts = {str(k): v for k, v in accounts.items()}
        self.b64 = b64
        self.failures = failures
        self.calls = []
        self.batches = []

    def _value(self, pk):
        raw = self.accounts.get(str(pk))
        if raw is None:
            return None
        if self.b64:
            return SimpleNamespace(data=[base64.b64encode(raw).decode(), "base64"])
        return SimpleNamespace(data=raw)

    def _maybe_fail(self):
        if self.failures:
            self.failures -= 1
            raise rpc_error()

    def get_account_info(self, pk):
        self.calls.append(str(pk))
        self._maybe_fail()
        return SimpleNamespace(value=self._value(pk))

    def get_multiple_accounts(self, pks):
        self.batches.append([str(pk) for pk in pks])
        self._maybe_fail()
        return SimpleNamespace(value=[self._value(pk) for pk in pks])


class FakeAsyncClient(FakeClient):
    async def get_account_info(self, pk):
        await asyncio.sleep(0)
        return FakeClient.get_account_info(self, pk)

    async def get_multiple_accounts(self, pks):
        await asyncio.sleep(0)
        return FakeClient.get_multiple_accounts(self, pks)


def pool_accounts(escrowed=5_000_000_000, vault_amount=8_000_000_000, supply=10_000_000_000, cool_down=3600):
    state_address, _ = derive_state_address()
    vault_address, _ = derive_vault_address(state_address)
    orca_mint = Pubkey.from_string(config.ORCA_MINT)
    return {
        state_address: make_state_bytes(escrowed, cool_down, size=2048),
        vault_address: make_token_account_bytes(orca_mint, state_address, vault_amount),
        Pubkey.from_string(config.XORCA_MINT): make_mint_bytes(supply, decimals=6),
    }


def test_fetch_account_bytes_raw_and_base64():
    pk = Pubkey.new_unique()
    assert rpc.fetch_account_bytes(FakeClient({pk: b"\x01\x02"}), pk) == b"\x01\x02"
    assert rpc.fetch_account_bytes(FakeClient({pk: b"\x01\x02"}, b64=True), str(pk)) == b"\x01\x02"


def test_fetch_account_bytes_missing_is_none():
    assert rpc.fetch_account_bytes(FakeClient({}), Pubkey.new_unique()) is None


def test_fetch_state_and_cool_down():
    client = FakeClient(pool_accounts())
    state = rpc.fetch_state(client)
    assert state.escrowed_orca_amount == 5_000_000_000
    assert state.cool_down_period_s == 3600
    assert rpc.fetch_cool_down_period_s(client) == 3600


def test_fetch_state_missing():
    with pytest.raises(AccountNotFound):
        rpc.fetch_state(FakeClient({}))


def test_fetch_vault_and_supply():
    client = FakeClient(pool_accounts())
    vault = rpc.fetch_vault_state(client)
    assert vault.mint == Pubkey.from_string(config.ORCA_MINT)
    assert vault.amount == 8_000_000_000
    assert rpc.fetch_xorca_mint_supply(client) == 10_000_000_000


def test_fetch_staking_exchange_rate():
    rate = rpc.fetch_staking_exchange_rate(FakeClient(pool_accounts()))
    assert rate == ExchangeRate(numerator=3_000_000_000, denominator=10_000_000_000)


def test_fetch_staking_exchange_rate_vault_below_escrow():
    with pytest.raises(InvalidState):
        rpc.fetch_staking_exchange_rate(FakeClient(pool_accounts(escrowed=9_000_000_000)))


def test_fetch_pending_withdraws_some_missing():
    accounts = pool_accounts()
    for idx in (0, 2, 5):
        address, _ = derive_pending_withdraw_address(STAKER, idx)
        accounts[address] = make_pending_withdraw_bytes(idx, STAKER, 1_000 + idx, NOW - 3600 + idx)

    views = rpc.fetch_pending_withdraws_for_staker(FakeClient(accounts), STAKER, search_bound=6, now=NOW)
    assert [v.withdraw_index for v in views] == [0, 2, 5]
    assert [v.record.withdrawable_orca_amount for v in views] == [1_000, 1_002, 1_005]
    assert all(v.is_ready for v in views)
    # cooldown comes from the state account
    assert views[0].time_elapsed == 3600 + 3600


def test_fetch_pending_withdraws_uses_one_batched_read():
    accounts = pool_accounts()
    address, _ = derive_pending_withdraw_address(STAKER, 4)
    accounts[address] = make_pending_withdraw_bytes(4, STAKER, 10, NOW)

    client = FakeClient(accounts)
    views = rpc.fetch_pending_withdraws_for_staker(client, STAKER, search_bound=15, now=NOW)
    assert [v.withdraw_index for v in views] == [4]
    assert len(client.batches) == 1
    assert len(client.batches[0]) == 15
    # only the state account is read individually
    assert client.calls == [str(derive_state_address()[0])]


def test_fetch_multiple_account_bytes_chunks_at_100():
    present = Pubkey.new_unique()
    keys = [Pubkey.new_unique() for _ in range(249)] + [present]
    client = FakeClient({present: b"\x07"})
    out = rpc.fetch_multiple_account_bytes(client, keys)
    assert [len(b) for b in client.batches] == [100, 100, 50]
    assert len(out) == 250
    assert out[-1] == b"\x07"
    assert out[:-1] == [None] * 249


def test_fetch_multiple_account_bytes_pads_short_response():
    class ShortClient:
        def get_multiple_accounts(self, pks):
            return SimpleNamespace(value=[SimpleNamespace(data=b"\x01")])

    assert rpc.fetch_multiple_account_bytes(ShortClient(), [Pubkey.new_unique(), Pubkey.new_unique()]) == [b"\x01", None]


def test_fetch_account_bytes_retries_then_raises(monkeypatch):
    sleeps = []
    monkeypatch.setattr(rpc.time, "sleep", sleeps.append)
    pk = Pubkey.new_unique()
    client = FakeClient({pk: b"\x01"}, failures=rpc.MAX_RETRIES)

    with pytest.raises(SolanaRpcException):
        rpc.fetch_account_bytes(client, pk)
    assert len(client.calls) == rpc.MAX_RETRIES
    assert sleeps == [0.5, 1.0]


def test_fetch_account_bytes_recovers_after_transient_error(monkeypatch):
    monkeypatch.setattr(rpc.time, "sleep", lambda s: None)
    pk = Pubkey.new_unique()
    client = FakeClient({pk: b"\x01"}, failures=1)
    assert rpc.fetch_account_bytes(client, pk) == b"\x01"
    assert len(client.calls) == 2


def test_transport_failure_is_not_a_missing_account(monkeypatch):
    monkeypatch.setattr(rpc.time, "sleep", lambda s: None)
    with pytest.raises(SolanaRpcException):
        rpc.fetch_state(FakeClient(pool_accounts(), failures=rpc.MAX_RETRIES))


def test_fetch_pending_withdraws_batch_failure_propagates(monkeypatch):
    monkeypatch.setattr(rpc.time, "sleep", lambda s: None)
    client = FakeClient(pool_accounts())

    def failing_batch(pks):
        client.batches.append(pks)
        raise rpc_error()

    client.get_multiple_accounts = failing_batch
    with pytest.raises(SolanaRpcException):
        rpc.fetch_pending_withdraws_for_staker(client, STAKER, search_bound=3, now=NOW)
    assert len(client.batches) == rpc.MAX_RETRIES


def test_fetch_account_bytes_async_retries_then_raises(monkeypatch):
    async def no_sleep(s):
        return None

    monkeypatch.setattr(rpc.asyncio, "sleep", no_sleep)
    pk = Pubkey.new_unique()
    client = FakeAsyncClient({pk: b"\x01"}, failures=rpc.MAX_RETRIES)
    with pytest.raises(SolanaRpcException):
        asyncio.run(rpc.fetch_account_bytes_async(client, pk))
    assert len(client.calls) == rpc.MAX_RETRIES


def test_fetch_pending_withdraws_bad_bound_issues_no_rpc():
    client = FakeClient(pool_accounts())
    with pytest.raises(InvalidArgument):
        rpc.fetch_pending_withdraws_for_staker(client, STAKER, search_bound=300)
    assert client.calls == []
    assert client.batches == []


def test_fetch_pending_withdraws_bad_staker_issues_no_rpc():
    client = FakeClient(pool_accounts())
    with pytest.raises(InvalidArgument):
        rpc.fetch_pending_withdraws_for_staker(client, "not-a-key")
    assert client.calls == []
    assert client.batches == []


def test_fetch_pending_withdraws_async():
    accounts = {}
    for idx in (1, 3):
        address, _ = derive_pending_withdraw_address(STAKER, idx)
        accounts[address] = make_pending_withdraw_bytes(idx, STAKER, 10, NOW + 60)

    client = FakeAsyncClient(accounts)
    views = asyncio.run(
        rpc.fetch_pending_withdraws_for_staker_async(client, STAKER, cool_down_period_s=120, search_bound=5, now=NOW)
    )
    assert [v.withdraw_index for v in views] == [1, 3]
    assert views[0].time_remaining == 60
    assert views[0].time_elapsed == 60
    assert len(client.batches) == 1
    assert len(client.batches[0]) == 5
    assert client.calls == []


def test_fetch_pending_withdraws_async_bad_staker():
    client = FakeAsyncClient({})
    with pytest.raises(InvalidArgument):
        asyncio.run(rpc.fetch_pending_withdraws_for_staker_async(client, "not-a-key", cool_down_period_s=60))
    assert client.batches == []

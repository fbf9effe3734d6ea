from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import logging

from fastapi import Depends, FastAPI, HTTPException, Query

import config
from conversion import get_exchange_rate, quote_stake, quote_unstake
from errors import AccountNotFound, ConversionError, DecodeError, InvalidArgument, StakingError
from logging_config import setup_logging
from pda import derive_state_address, derive_vault_address
from rpc import get_client, fetch_state, fetch_vault_state, fetch_xorca_mint_supply, fetch_pending_withdraws_for_staker
from scanner import MAX_SEARCH_BOUND, summarize

logger = logging.getLogger(__name__)

app = FastAPI(title="xORCA Staking Mirror")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context: initialize logging and the shared RPC client."""
    setup_logging()
    app.state.client = get_client()
    try:
        yield
    finally:
        app.state.client = None


app.router.lifespan_context = lifespan


def get_rpc_client():
    client = getattr(app.state, "client", None)
    if client is None:
        client = get_client()
        app.state.client = client
    return client


def _http_error(e: StakingError) -> HTTPException:
    if isinstance(e, InvalidArgument):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, AccountNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConversionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, DecodeError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _load_pool(client):
    return fetch_state(client), fetch_vault_state(client), fetch_xorca_mint_supply(client)


@app.get("/addresses")
def get_addresses() -> Dict[str, str]:
    state_address, _ = derive_state_address()
    vault_address, _ = derive_vault_address(state_address)
    return {
        "program": config.XORCA_STAKING_PROGRAM_ID,
        "state": str(state_address),
        "vault": str(vault_address),
        "orca_mint": config.ORCA_MINT,
        "xorca_mint": config.XORCA_MINT,
    }


@app.get("/exchange-rate")
def exchange_rate(client=Depends(get_rpc_client)) -> Dict[str, Any]:
    """Exact rate as an unreduced pair; amounts are returned as strings (u64)."""
    try:
        state, vault, supply = _load_pool(client)
        rate = get_exchange_rate(state, vault, supply)
    except StakingError as e:
        raise _http_error(e)
    return {
        "numerator": str(rate.numerator),
        "denominator": str(rate.denominator),
        "escrowed_orca_amount": str(state.escrowed_orca_amount),
        "vault_amount": str(vault.amount),
        "cool_down_period_s": state.cool_down_period_s,
    }


@app.get("/quote/{side}")
def quote(side: str, amount: int = Query(..., ge=0), client=Depends(get_rpc_client)) -> Dict[str, str]:
    if side not in ("stake", "unstake"):
        raise HTTPException(status_code=400, detail="side must be 'stake' or 'unstake'")
    try:
        state, vault, supply = _load_pool(client)
        if side == "stake":
            out = quote_stake(state, vault, supply, amount)
        else:
            out = quote_unstake(state, vault, supply, amount)
    except StakingError as e:
        raise _http_error(e)
    return {"side": side, "amount_in": str(amount), "amount_out": str(out)}


@app.get("/pending-withdraws/{staker}")
def pending_withdraws(
    staker: str,
    search_bound: Optional[int] = Query(None, alias="max"),
    client=Depends(get_rpc_client),
) -> Dict[str, Any]:
    try:
        views = fetch_pending_withdraws_for_staker(client, staker, search_bound=search_bound)
    except StakingError as e:
        raise _http_error(e)

    items: List[Dict[str, Any]] = []
    for v in views:
        items.append(
            {
                "index": v.withdraw_index,
                "address": str(v.address),
                "orca_amount": str(v.record.withdrawable_orca_amount),
                "withdrawable_timestamp": v.record.withdrawable_timestamp,
                "status": v.status.value,
                "is_ready": v.is_ready,
                "time_remaining": v.time_remaining,
                "time_elapsed": v.time_elapsed,
                "time_since_ready": v.time_since_ready,
            }
        )
    summary = summarize(views)
    return {
        "staker": staker,
        "max_search_bound": MAX_SEARCH_BOUND,
        "pending_withdraws": items,
        "summary": {
            "total": summary.total,
            "ready": summary.ready,
            "cooling_down": summary.cooling_down,
            "ready_orca_amount": str(summary.ready_orca_amount),
            "cooling_down_orca_amount": str(summary.cooling_down_orca_amount),
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

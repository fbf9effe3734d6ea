# main.py
import argparse
import logging
import sys

from logging_config import setup_logging
setup_logging()

import config
from conversion import non_escrowed_orca_amount, quote_stake, quote_unstake, get_exchange_rate
from errors import StakingError
from pda import derive_state_address, derive_vault_address
from rpc import (
    get_client,
    fetch_state,
    fetch_vault_state,
    fetch_xorca_mint_supply,
    fetch_pending_withdraws_for_staker,
)
from scanner import format_duration, summarize

logger = logging.getLogger(__name__)


def run_status(rpc_url: str):
    client = get_client(rpc_url)

    state_address, _ = derive_state_address()
    vault_address, _ = derive_vault_address(state_address)
    logger.info("State account: %s", state_address)
    logger.info("Vault account: %s", vault_address)
    logger.info("xORCA mint: %s", config.XORCA_MINT)
    logger.info("ORCA mint: %s", config.ORCA_MINT)

    state = fetch_state(client)
    vault = fetch_vault_state(client)
    supply = fetch_xorca_mint_supply(client)
    rate = get_exchange_rate(state, vault, supply)

    logger.info("Cool down period: %s seconds", state.cool_down_period_s)
    logger.info("Total ORCA in vault: %s", vault.amount)
    logger.info("Escrowed ORCA: %s", state.escrowed_orca_amount)
    logger.info("Non-escrowed ORCA: %s", non_escrowed_orca_amount(state, vault))
    logger.info("xORCA supply: %s", supply)
    logger.info("Exchange rate (ORCA per xORCA): %s / %s", rate.numerator, rate.denominator)

    fraction = rate.as_fraction()
    if fraction is not None and fraction != 0:
        logger.info("ORCA -> xORCA: %.10f", float(1 / fraction))
        logger.info("xORCA -> ORCA: %.10f", float(fraction))

    return {
        "state": state,
        "vault": vault,
        "xorca_supply": supply,
        "exchange_rate": rate,
    }


def run_pending_withdraws(staker: str, rpc_url: str, search_bound: int):
    client = get_client(rpc_url)

    views = fetch_pending_withdraws_for_staker(client, staker, search_bound=search_bound)
    logger.info("Found %d pending withdraws for %s", len(views), staker)

    for v in views:
        logger.info("Pending withdraw #%d at %s", v.withdraw_index, v.address)
        logger.info("  ORCA amount: %s", v.record.withdrawable_orca_amount)
        logger.info("  Time elapsed: %s", format_duration(v.time_elapsed))
        if v.is_ready:
            logger.info("  Status: READY (for %s)", format_duration(v.time_since_ready))
        else:
            logger.info("  Status: COOLDOWN (%s remaining)", format_duration(v.time_remaining))

    summary = summarize(views)
    logger.info(
        "Summary: total=%d ready=%d (%s ORCA) cooling_down=%d (%s ORCA)",
        summary.total,
        summary.ready,
        summary.ready_orca_amount,
        summary.cooling_down,
        summary.cooling_down_orca_amount,
    )
    return views


def run_quote(rpc_url: str, stake: int = None, unstake: int = None):
    client = get_client(rpc_url)
    state = fetch_state(client)
    vault = fetch_vault_state(client)
    supply = fetch_xorca_mint_supply(client)

    res = {}
    if stake is not None:
        res["xorca_out"] = quote_stake(state, vault, supply, stake)
        logger.info("Staking %s ORCA mints %s xORCA", stake, res["xorca_out"])
    if unstake is not None:
        res["orca_out"] = quote_unstake(state, vault, supply, unstake)
        logger.info("Unstaking %s xORCA releases %s ORCA", unstake, res["orca_out"])
    return res


def main(argv=None):
    parser = argparse.ArgumentParser(description="Read-only view of the xORCA staking program.")
    parser.add_argument("--rpc", default=config.RPC_URL, help="Solana RPC URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show state, vault, supply and exchange rate")

    p_pw = sub.add_parser("pending-withdraws", help="List a staker's pending withdrawals")
    p_pw.add_argument("staker", help="Staker public key")
    p_pw.add_argument("--max", type=int, default=config.MAX_WITHDRAWALS_TO_SEARCH, help="Number of withdraw indices to search")

    p_quote = sub.add_parser("quote", help="Quote a stake or unstake at the current rate")
    p_quote.add_argument("--stake", type=int, help="ORCA amount (base units) to stake")
    p_quote.add_argument("--unstake", type=int, help="xORCA amount (base units) to unstake")

    args = parser.parse_args(argv)
    try:
        if args.command == "status":
            res = run_status(args.rpc)
        elif args.command == "pending-withdraws":
            res = run_pending_withdraws(args.staker, args.rpc, args.max)
        else:
            if args.stake is None and args.unstake is None:
                parser.error("quote needs --stake and/or --unstake")
            res = run_quote(args.rpc, stake=args.stake, unstake=args.unstake)
    except StakingError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1
    logger.debug("Result: %s", res)
    return 0


if __name__ == "__main__":
    sys.exit(main())

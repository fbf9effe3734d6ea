"""Configuration helpers: read from environment with sensible defaults."""
import os


DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

# Program and mint addresses (mainnet canonical)
DEFAULT_STAKING_PROGRAM_ID = "8joqMXgaBjc2gGtPVGdZ2tBMxzRJ8igw2SCZQAPky5CE"
DEFAULT_ORCA_MINT = "orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE"
DEFAULT_XORCA_MINT = "xorcaYqbXUNz3474ubUMJAdu2xgPsew3rUCe5ughT3N"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

DEFAULT_MAX_WITHDRAWALS_TO_SEARCH = 15


def _parse_int(s: str, default: int) -> int:
    try:
        return int(s)
    except (TypeError, ValueError):
        return default


RPC_URL = os.getenv("RPC_URL", DEFAULT_RPC_URL)

XORCA_STAKING_PROGRAM_ID = os.getenv("XORCA_STAKING_PROGRAM_ID", DEFAULT_STAKING_PROGRAM_ID)
ORCA_MINT = os.getenv("ORCA_MINT", DEFAULT_ORCA_MINT)
XORCA_MINT = os.getenv("XORCA_MINT", DEFAULT_XORCA_MINT)

# Search bound used by the pending-withdraw scanner when callers pass none.
MAX_WITHDRAWALS_TO_SEARCH = DEFAULT_MAX_WITHDRAWALS_TO_SEARCH
env_max = os.getenv("MAX_WITHDRAWALS_TO_SEARCH")
if env_max:
    MAX_WITHDRAWALS_TO_SEARCH = _parse_int(env_max, DEFAULT_MAX_WITHDRAWALS_TO_SEARCH)


# Logging level
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

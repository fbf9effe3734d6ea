"""Error types raised by the staking mirror."""


class StakingError(Exception):
    """Base class for every error raised by this package."""


class DecodeError(StakingError):
    """Account bytes do not match the expected layout (too short or wrong tag)."""


class InvalidArgument(StakingError, ValueError):
    """A caller-supplied argument is out of range or of the wrong type."""


class AddressDerivationError(StakingError):
    """No bump in [0, 255] produced an off-curve address for the given seeds."""


class AccountNotFound(StakingError):
    """A required singleton account (state, vault, mint) does not exist."""

    def __init__(self, what: str, address) -> None:
        self.what = what
        self.address = address
        super().__init__(f"{what} account not found at {address}")


class ConversionError(StakingError):
    """Base class for exchange-rate arithmetic failures."""


class InvalidState(ConversionError):
    """Conversion attempted against an empty or inconsistent reserve."""


class ArithmeticOverflow(ConversionError):
    """An input or a result does not fit in an unsigned 64-bit amount."""

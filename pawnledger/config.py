"""Configuration management for pawnledger."""

from __future__ import annotations
from dataclasses import dataclass
import os


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LOG_FORMATS = ("standard", "json")


class ConfigurationError(ValueError):
    """Raised when configuration is invalid."""


@dataclass(frozen=True)
class LedgerConfig:
    """Settings for the loan book, the due-date sweep and logging."""

    default_extension_days: int = 30
    sweep_extension_days: int = 30
    transaction_number_digits: int = 9
    log_level: str = "INFO"
    log_format: str = "standard"

    def __post_init__(self):
        for name in ('default_extension_days', 'sweep_extension_days', 'transaction_number_digits'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of {', '.join(_LOG_LEVELS)}, got {self.log_level!r}")
        if self.log_format not in _LOG_FORMATS:
            raise ConfigurationError(f"log_format must be one of {', '.join(_LOG_FORMATS)}, got {self.log_format!r}")

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Create config from PAWN_LEDGER_* environment variables."""
        return cls(
            default_extension_days=_env_int("PAWN_LEDGER_DEFAULT_EXTENSION_DAYS", 30),
            sweep_extension_days=_env_int("PAWN_LEDGER_SWEEP_EXTENSION_DAYS", 30),
            transaction_number_digits=_env_int("PAWN_LEDGER_TRANSACTION_NUMBER_DIGITS", 9),
            log_level=os.getenv("PAWN_LEDGER_LOG_LEVEL", "INFO"),
            log_format=os.getenv("PAWN_LEDGER_LOG_FORMAT", "standard"),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None

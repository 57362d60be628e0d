"""
Configuration types for coinwise.

Immutable, validated dataclasses, one per component. `AppConfig` aggregates
them; `config_loader` builds it from TOML, environment and CLI layers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional

from coinwise.errors.errors import ConfigurationError

BINANCE_REST_ENDPOINT = "https://api.binance.com"

DEFAULT_SYMBOLS: tuple[str, ...] = (
    "BTCUSDT",
    "ETHUSDT",
    "BNBUSDT",
    "SOLUSDT",
    "XRPUSDT",
    "ADAUSDT",
    "DOGEUSDT",
)


@dataclass(frozen=True)
class LedgerConfig:
    """Starting state for freshly created accounts."""

    starting_balance: Decimal = Decimal("10000")
    quote_ccy: str = "USDT"

    def __post_init__(self) -> None:
        if self.starting_balance < 0:
            raise ConfigurationError(
                "starting_balance must be non-negative",
                field="starting_balance",
                value=self.starting_balance,
            )


@dataclass(frozen=True)
class CompetitionConfig:
    baseline_net_worth: Decimal = Decimal("10000")
    entry_fee: Decimal = Decimal("10")
    duration_ms: int = 60_000

    def __post_init__(self) -> None:
        if self.baseline_net_worth <= 0:
            raise ConfigurationError(
                "baseline_net_worth must be positive",
                field="baseline_net_worth",
                value=self.baseline_net_worth,
            )
        if self.entry_fee < 0:
            raise ConfigurationError(
                "entry_fee must be non-negative",
                field="entry_fee",
                value=self.entry_fee,
            )
        if self.duration_ms <= 0:
            raise ConfigurationError(
                "duration_ms must be positive",
                field="duration_ms",
                value=self.duration_ms,
            )


@dataclass(frozen=True)
class PriceFeedConfig:
    symbols: tuple[str, ...] = DEFAULT_SYMBOLS
    poll_interval_s: float = 10.0
    base_url: str = BINANCE_REST_ENDPOINT
    request_timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if not self.symbols:
            raise ConfigurationError("At least one symbol must be configured", field="symbols")
        if self.poll_interval_s <= 0:
            raise ConfigurationError(
                "poll_interval_s must be positive",
                field="poll_interval_s",
                value=self.poll_interval_s,
            )
        if self.request_timeout_s <= 0:
            raise ConfigurationError(
                "request_timeout_s must be positive",
                field="request_timeout_s",
                value=self.request_timeout_s,
            )


@dataclass(frozen=True)
class SyncConfig:
    """Remote layout and outbox retry policy."""

    users_path: str = "users"
    pool_path: str = "competition/players"

    max_attempts: int = 5
    base_retry_delay_s: float = 0.5
    max_retry_delay_s: float = 30.0
    retry_jitter: float = 0.3  # ±30% jitter

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(
                "max_attempts must be at least 1",
                field="max_attempts",
                value=self.max_attempts,
            )
        if self.base_retry_delay_s < 0 or self.max_retry_delay_s < self.base_retry_delay_s:
            raise ConfigurationError(
                "retry delays must satisfy 0 <= base_retry_delay_s <= max_retry_delay_s",
                field="base_retry_delay_s",
                value=self.base_retry_delay_s,
            )
        if not (0 <= self.retry_jitter <= 1):
            raise ConfigurationError(
                "retry_jitter must be between 0 and 1",
                field="retry_jitter",
                value=self.retry_jitter,
            )
        for name in ("users_path", "pool_path"):
            value = getattr(self, name)
            if not value or value.startswith("/") or value.endswith("/"):
                raise ConfigurationError(
                    f"{name} must be a non-empty relative path",
                    field=name,
                    value=value,
                )


@dataclass(frozen=True)
class PoolConfig:
    """Leaderboard pool read-model settings."""

    bot_name_pattern: str = "AlgoTrader"
    cache_path: Optional[Path] = field(
        default_factory=lambda: Path(".coinwise") / "competition_pool.json"
    )

    def __post_init__(self) -> None:
        try:
            re.compile(self.bot_name_pattern)
        except re.error as e:
            raise ConfigurationError(
                f"bot_name_pattern is not a valid regex: {e}",
                field="bot_name_pattern",
                value=self.bot_name_pattern,
            ) from e


@dataclass(frozen=True)
class FirebaseConfig:
    database_url: Optional[str] = None  # e.g. https://<project>.firebaseio.com
    identity_url: str = "https://identitytoolkit.googleapis.com/v1"
    request_timeout_s: float = 15.0

    def __post_init__(self) -> None:
        if self.database_url is not None and not self.database_url.startswith("https://"):
            raise ConfigurationError(
                "database_url must be an https URL",
                field="database_url",
                value=self.database_url,
            )


@dataclass(frozen=True)
class AppConfig:
    """Immutable top-level configuration."""

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    competition: CompetitionConfig = field(default_factory=CompetitionConfig)
    prices: PriceFeedConfig = field(default_factory=PriceFeedConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(
                "log_level must be a standard logging level name",
                field="log_level",
                value=self.log_level,
            )

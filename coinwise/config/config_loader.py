"""
Purpose:
    - Load a TOML config file
    - Layer defaults < file < environment (COINWISE_*) < CLI (--set KEY=VALUE)
    - Validate the merged mapping (unknown keys are rejected) and build AppConfig
"""

from __future__ import annotations

import logging
import os
import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from coinwise.config.configs import (
    DEFAULT_SYMBOLS,
    AppConfig,
    CompetitionConfig,
    FirebaseConfig,
    LedgerConfig,
    PoolConfig,
    PriceFeedConfig,
    SyncConfig,
)
from coinwise.core.clock import parse_duration
from coinwise.errors.errors import ConfigurationError
from coinwise.utils.utility import deep_merge, insert_path, validation_error_parser

logger = logging.getLogger(__name__)

ENV_PREFIX = "COINWISE_"
ENV_NESTING = "__"

# --- Schema ---


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LedgerSection(_Section):
    starting_balance: Decimal = Field(default=Decimal("10000"), ge=0)
    quote_ccy: str = "USDT"


class CompetitionSection(_Section):
    baseline_net_worth: Decimal = Field(default=Decimal("10000"), gt=0)
    entry_fee: Decimal = Field(default=Decimal("10"), ge=0)
    duration: Union[int, str] = Field(default="1m", description="ms or a '30s'/'1h' string")

    def duration_ms(self) -> int:
        if isinstance(self.duration, int):
            return self.duration
        text = self.duration.strip()
        if text.isdigit():
            return int(text)
        return parse_duration(text)


class PricesSection(_Section):
    symbols: list[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    poll_interval_s: float = Field(default=10.0, gt=0)
    base_url: str = "https://api.binance.com"
    request_timeout_s: float = Field(default=10.0, gt=0)

    @field_validator("symbols", mode="before")
    @classmethod
    def _split_symbols(cls, v: Any) -> Any:
        # env/CLI layers deliver "BTCUSDT,ETHUSDT"
        if isinstance(v, str):
            return [s.strip().upper() for s in v.split(",") if s.strip()]
        return v


class SyncSection(_Section):
    users_path: str = "users"
    pool_path: str = "competition/players"
    max_attempts: int = Field(default=5, ge=1)
    base_retry_delay_s: float = Field(default=0.5, ge=0)
    max_retry_delay_s: float = Field(default=30.0, ge=0)
    retry_jitter: float = Field(default=0.3, ge=0, le=1)


class PoolSection(_Section):
    bot_name_pattern: str = "AlgoTrader"
    cache_path: Optional[str] = ".coinwise/competition_pool.json"
    cache_enabled: bool = True


class FirebaseSection(_Section):
    database_url: Optional[str] = None
    identity_url: str = "https://identitytoolkit.googleapis.com/v1"
    request_timeout_s: float = Field(default=15.0, gt=0)


class ConfigFile(_Section):
    ledger: LedgerSection = Field(default_factory=LedgerSection)
    competition: CompetitionSection = Field(default_factory=CompetitionSection)
    prices: PricesSection = Field(default_factory=PricesSection)
    sync: SyncSection = Field(default_factory=SyncSection)
    pool: PoolSection = Field(default_factory=PoolSection)
    firebase: FirebaseSection = Field(default_factory=FirebaseSection)
    log_level: str = "INFO"


# --- Loader ---


class ConfigLoader:
    """
    Config-loader; loading toml files and resolving layers into AppConfig.
    """

    def __init__(self, base_dir: str | Path = ".") -> None:
        self._base_dir = Path(base_dir)

    def load(self, file_name: str | Path) -> dict[str, Any]:
        path = Path(file_name)
        if not path.is_absolute():
            path = self._base_dir / path

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("rb") as f:
            return tomllib.load(f)

    @staticmethod
    def env_overrides(
        environ: Optional[Mapping[str, str]] = None, prefix: str = ENV_PREFIX
    ) -> dict[str, Any]:
        """
        COINWISE_SYNC__MAX_ATTEMPTS=3 -> {"sync": {"max_attempts": "3"}}
        COINWISE_LOG_LEVEL=DEBUG      -> {"log_level": "DEBUG"}
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for key, value in env.items():
            if not key.startswith(prefix):
                continue
            dotted = key[len(prefix) :].lower().replace(ENV_NESTING, ".")
            if dotted.startswith("secret_"):
                # secrets are resolved through EnvSecretsProvider, never configuration
                continue
            insert_path(overrides, dotted, value)
        return overrides

    @staticmethod
    def cli_overrides(pairs: list[str]) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for item in pairs:
            key, sep, value = item.partition("=")
            if sep == "":
                raise ValueError(f"--set requires KEY=VALUE format (got {item!r})")
            insert_path(overrides, key, value)
        return overrides

    def resolve(
        self,
        file_cfg: Optional[Mapping[str, Any]] = None,
        env_cfg: Optional[Mapping[str, Any]] = None,
        cli_cfg: Optional[Mapping[str, Any]] = None,
    ) -> AppConfig:
        merged: Mapping[str, Any] = {}
        for layer in (file_cfg, env_cfg, cli_cfg):
            if layer:
                merged = deep_merge(merged, layer)

        try:
            parsed = ConfigFile.model_validate(merged)
        except ValidationError as e:
            errors = validation_error_parser(e)
            logger.error(f"[config] validation failed: {errors}")
            raise ConfigurationError(
                "Invalid configuration",
                field=errors[0]["path"] if errors else None,
                component="config",
                details={"errors": errors},
            ) from e

        return self._build(parsed)

    def load_app_config(
        self,
        file_name: Optional[str | Path] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
        cli_pairs: Optional[list[str]] = None,
    ) -> AppConfig:
        file_cfg = self.load(file_name) if file_name is not None else None
        return self.resolve(
            file_cfg=file_cfg,
            env_cfg=self.env_overrides(environ),
            cli_cfg=self.cli_overrides(cli_pairs or []),
        )

    @staticmethod
    def _build(parsed: ConfigFile) -> AppConfig:
        try:
            duration_ms = parsed.competition.duration_ms()
        except ValueError as e:
            raise ConfigurationError(
                str(e), field="competition.duration", value=parsed.competition.duration
            ) from e

        cache_path = None
        if parsed.pool.cache_enabled and parsed.pool.cache_path:
            cache_path = Path(parsed.pool.cache_path).expanduser()

        return AppConfig(
            ledger=LedgerConfig(
                starting_balance=parsed.ledger.starting_balance,
                quote_ccy=parsed.ledger.quote_ccy,
            ),
            competition=CompetitionConfig(
                baseline_net_worth=parsed.competition.baseline_net_worth,
                entry_fee=parsed.competition.entry_fee,
                duration_ms=duration_ms,
            ),
            prices=PriceFeedConfig(
                symbols=tuple(parsed.prices.symbols),
                poll_interval_s=parsed.prices.poll_interval_s,
                base_url=parsed.prices.base_url,
                request_timeout_s=parsed.prices.request_timeout_s,
            ),
            sync=SyncConfig(**parsed.sync.model_dump()),
            pool=PoolConfig(
                bot_name_pattern=parsed.pool.bot_name_pattern,
                cache_path=cache_path,
            ),
            firebase=FirebaseConfig(**parsed.firebase.model_dump()),
            log_level=parsed.log_level.upper(),
        )

"""Environment and CLI runtime configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Self

from dotenv import load_dotenv

from politrade.domain.models import MergeStrategy, TradingMode
from politrade.errors import ConfigError, SafetyError, ValidationError

PAPER_BASE_URL = "https://paper-api.alpaca.markets"
LIVE_BASE_URL = "https://api.alpaca.markets"
DEFAULT_DATA_URL = "https://data.alpaca.markets"
DEFAULT_STRATEGY_WEIGHTS = {"congressional": 0.50, "lobbying": 0.30, "insider": 0.20}
SIZING_METHODS = {"weighted", "volatility"}


def parse_bool(value: str | None, default: bool) -> bool:
    """Parse truthy environment strings."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_trading_mode(value: str | None) -> TradingMode:
    """Parse trading mode, defaulting to paper when unset."""
    if value is None or not value.strip():
        return TradingMode.PAPER
    candidate = value.strip().lower()
    try:
        return TradingMode(candidate)
    except ValueError as exc:
        raise ConfigError(f"Invalid TRADING_MODE: {value}. Must be 'paper' or 'live'") from exc


def parse_merge_strategy(value: str | MergeStrategy) -> MergeStrategy:
    """Parse a merge strategy name without defaulting on bad input."""
    if isinstance(value, MergeStrategy):
        return value
    try:
        return MergeStrategy(str(value).strip().lower())
    except ValueError as exc:
        supported = ", ".join(item.value for item in MergeStrategy)
        raise ValidationError(
            f"merge_strategy must be one of {supported}, got {value!r}"
        ) from exc


def parse_weights(value: str | None, default: Mapping[str, float] | None = None) -> dict[str, float]:
    """Parse ``name=weight`` pairs separated by commas."""
    fallback = dict(default if default is not None else DEFAULT_STRATEGY_WEIGHTS)
    if value is None or not value.strip():
        return fallback
    weights: dict[str, float] = {}
    for item in value.split(","):
        text = item.strip()
        if not text:
            continue
        name, separator, raw_weight = text.partition("=")
        if not separator or not name.strip():
            raise ConfigError(f"Invalid strategy weight entry '{text}', expected name=weight")
        try:
            weights[name.strip().lower()] = float(raw_weight)
        except ValueError as exc:
            raise ConfigError(f"Invalid weight for strategy '{name.strip()}': {raw_weight}") from exc
    return weights


def _coerce_param(raw: str) -> Any:
    text = raw.strip()
    lowered = text.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    for cast in (int, float):
        try:
            return cast(text)
        except ValueError:
            continue
    return text


def parse_strategy_params(
    value: str | None,
    default: Mapping[str, Mapping[str, Any]] | None = None,
) -> dict[str, dict[str, Any]]:
    """Parse ``strategy.param=value`` pairs separated by commas.

    Entries are layered over ``default`` so a single override keeps the other
    parameters of the same strategy. Numeric and ``true``/``false`` values are
    converted; anything else stays a string.
    """
    params = {name: dict(values) for name, values in (default or {}).items()}
    if value is None or not value.strip():
        return params
    for item in value.split(","):
        text = item.strip()
        if not text:
            continue
        key, separator, raw_value = text.partition("=")
        strategy, dot, param = key.strip().partition(".")
        if not separator or not dot or not strategy.strip() or not param.strip():
            raise ConfigError(
                f"Invalid strategy parameter entry '{text}', expected strategy.param=value"
            )
        params.setdefault(strategy.strip().lower(), {})[param.strip()] = _coerce_param(raw_value)
    return params


@dataclass(frozen=True)
class BlendConfig:
    """Inputs for building one blended portfolio."""

    total_equity: float
    strategy_weights: dict[str, float]
    merge_strategy: MergeStrategy = MergeStrategy.ADDITIVE
    max_position_pct: float = 0.15
    min_position_value: float = 1000.0
    enable_shorts: bool = True
    strategy_params: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def weight_sum(self) -> float:
        return sum(self.strategy_weights.values())

    def validate(self) -> Self:
        """Validate blend inputs before any strategy executes."""
        if self.total_equity <= 0:
            raise ValidationError("total_equity must be positive")
        if not self.strategy_weights:
            raise ValidationError("strategy_weights cannot be empty")
        for name, weight in self.strategy_weights.items():
            if weight < 0:
                raise ValidationError(f"weight for '{name}' must be non-negative")
        merge_strategy = parse_merge_strategy(self.merge_strategy)
        if self.max_position_pct <= 0 or self.max_position_pct > 1:
            raise ValidationError("max_position_pct must be between 0 and 1")
        if self.min_position_value < 0:
            raise ValidationError("min_position_value must be non-negative")
        if merge_strategy is not self.merge_strategy:
            return replace(self, merge_strategy=merge_strategy)
        return self


@dataclass(frozen=True)
class GatewayConfig:
    """Brokerage client configuration. Construction is the safety gate."""

    mode: TradingMode = TradingMode.PAPER
    api_key: str = ""
    secret_key: str = ""
    confirm_live: bool = False
    data_url: str = DEFAULT_DATA_URL
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if not isinstance(self.mode, TradingMode):
            raise ConfigError(f"Invalid trading mode: {self.mode!r}")
        if self.mode is TradingMode.LIVE and not self.confirm_live:
            raise SafetyError(
                "Live trading requires explicit confirmation (CONFIRM_LIVE_TRADING=yes "
                "or --confirm-live)"
            )
        if not self.api_key:
            raise ConfigError(f"Missing {self.credential_prefix}_API_KEY_ID for {self.mode} mode")
        if not self.secret_key:
            raise ConfigError(
                f"Missing {self.credential_prefix}_API_SECRET_KEY for {self.mode} mode"
            )
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")

    @property
    def base_url(self) -> str:
        return LIVE_BASE_URL if self.mode is TradingMode.LIVE else PAPER_BASE_URL

    @property
    def credential_prefix(self) -> str:
        return "ALPACA_LIVE" if self.mode is TradingMode.LIVE else "ALPACA_PAPER"

    @classmethod
    def from_settings(cls, settings: Settings) -> GatewayConfig:
        """Pick the credential pair matching the selected mode."""
        if settings.trading_mode is TradingMode.LIVE:
            api_key, secret_key = settings.live_api_key, settings.live_secret_key
        else:
            api_key, secret_key = settings.paper_api_key, settings.paper_secret_key
        return cls(
            mode=settings.trading_mode,
            api_key=api_key,
            secret_key=secret_key,
            confirm_live=settings.confirm_live_trading,
            data_url=settings.data_url,
            timeout=settings.request_timeout_seconds,
        )


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    trading_mode: TradingMode = TradingMode.PAPER
    confirm_live_trading: bool = False
    paper_api_key: str = ""
    paper_secret_key: str = ""
    live_api_key: str = ""
    live_secret_key: str = ""
    data_url: str = DEFAULT_DATA_URL
    request_timeout_seconds: float = 30.0
    strategy_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_STRATEGY_WEIGHTS)
    )
    merge_strategy: MergeStrategy = MergeStrategy.ADDITIVE
    max_position_pct: float = 0.15
    min_position_value: float = 1000.0
    enable_shorts: bool = True
    strategy_params: dict[str, dict[str, Any]] = field(default_factory=dict)
    sizing_method: str = "weighted"
    risk_target_pct: float = 0.01
    signals_dir: str = "signals"
    events_dir: str = "runs"
    state_db_path: str = "state/politrade_state.db"
    block_cooldown_days: int = 7
    log_level: str = "INFO"
    plan_only: bool = False

    @classmethod
    def from_env(cls) -> Self:
        """Create settings from environment variables."""
        load_dotenv()
        raw = cls(
            trading_mode=parse_trading_mode(os.getenv("TRADING_MODE")),
            confirm_live_trading=str(os.getenv("CONFIRM_LIVE_TRADING", "")).strip().lower()
            == "yes",
            paper_api_key=str(os.getenv("ALPACA_PAPER_API_KEY_ID", "")).strip(),
            paper_secret_key=str(os.getenv("ALPACA_PAPER_API_SECRET_KEY", "")).strip(),
            live_api_key=str(os.getenv("ALPACA_LIVE_API_KEY_ID", "")).strip(),
            live_secret_key=str(os.getenv("ALPACA_LIVE_API_SECRET_KEY", "")).strip(),
            data_url=str(os.getenv("ALPACA_DATA_URL", DEFAULT_DATA_URL)).strip(),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")),
            strategy_weights=parse_weights(os.getenv("STRATEGY_WEIGHTS")),
            merge_strategy=parse_merge_strategy(os.getenv("MERGE_STRATEGY", "additive")),
            max_position_pct=float(os.getenv("MAX_POSITION_PCT", "0.15")),
            min_position_value=float(os.getenv("MIN_POSITION_VALUE", "1000")),
            enable_shorts=parse_bool(os.getenv("ENABLE_SHORTS"), True),
            strategy_params=parse_strategy_params(os.getenv("STRATEGY_PARAMS")),
            sizing_method=str(os.getenv("SIZING_METHOD", "weighted")).strip().lower(),
            risk_target_pct=float(os.getenv("RISK_TARGET_PCT", "0.01")),
            signals_dir=str(os.getenv("SIGNALS_DIR", "signals")).strip(),
            events_dir=str(os.getenv("EVENTS_DIR", "runs")).strip(),
            state_db_path=str(os.getenv("STATE_DB_PATH", "state/politrade_state.db")).strip(),
            block_cooldown_days=int(os.getenv("BLOCK_COOLDOWN_DAYS", "7")),
            log_level=str(os.getenv("LOG_LEVEL", "INFO")).strip().upper(),
            plan_only=parse_bool(os.getenv("PLAN_ONLY"), False),
        )
        return raw.validate()

    def with_overrides(self, **kwargs: object) -> Self:
        """Return a new settings object with updated values."""
        overrides = dict(kwargs)
        mode_override = overrides.get("trading_mode")
        if isinstance(mode_override, str) and not isinstance(mode_override, TradingMode):
            overrides["trading_mode"] = parse_trading_mode(mode_override)
        merge_override = overrides.get("merge_strategy")
        if isinstance(merge_override, str) and not isinstance(merge_override, MergeStrategy):
            overrides["merge_strategy"] = parse_merge_strategy(merge_override)
        updated = replace(self, **overrides)
        return updated.validate()

    def blend_config(self, total_equity: float) -> BlendConfig:
        """Build the blender configuration for the current account equity."""
        return BlendConfig(
            total_equity=total_equity,
            strategy_weights=dict(self.strategy_weights),
            merge_strategy=self.merge_strategy,
            max_position_pct=self.max_position_pct,
            min_position_value=self.min_position_value,
            enable_shorts=self.enable_shorts,
            strategy_params={name: dict(p) for name, p in self.strategy_params.items()},
        ).validate()

    def validate(self) -> Self:
        """Validate settings fields."""
        if self.request_timeout_seconds <= 0:
            raise ConfigError("request_timeout_seconds must be positive")
        if not self.strategy_weights:
            raise ConfigError("strategy_weights cannot be empty")
        if self.max_position_pct <= 0 or self.max_position_pct > 1:
            raise ConfigError("max_position_pct must be between 0 and 1")
        if self.min_position_value < 0:
            raise ConfigError("min_position_value must be non-negative")
        if self.sizing_method not in SIZING_METHODS:
            raise ConfigError("sizing_method must be one of weighted, volatility")
        if self.risk_target_pct <= 0 or self.risk_target_pct >= 1:
            raise ConfigError("risk_target_pct must be between 0 and 1")
        if self.block_cooldown_days <= 0:
            raise ConfigError("block_cooldown_days must be positive")
        return self

"""Engine policy knobs, with environment variable overrides."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunable policy for one market engine. Defaults are the production values."""

    tick_interval: float = 30.0
    breaker_threshold: float = 0.20
    halt_cooldown: float = 300.0
    escalation_fraction: float = 0.30
    escalation_window: float = 120.0
    market_halt_cooldown: float = 1800.0
    event_probability: float = 0.02
    ipo_window_hours: float = 8.0
    max_write_retries: int = 3
    rng_seed: int | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``EXCHANGE_*`` variables. Blank values keep the default."""
        env = os.environ if environ is None else environ
        defaults = cls()
        config = cls(
            tick_interval=_env_float(env, "EXCHANGE_TICK_INTERVAL", defaults.tick_interval),
            breaker_threshold=_env_float(env, "EXCHANGE_BREAKER_THRESHOLD", defaults.breaker_threshold),
            halt_cooldown=_env_float(env, "EXCHANGE_HALT_COOLDOWN", defaults.halt_cooldown),
            escalation_fraction=_env_float(
                env, "EXCHANGE_ESCALATION_FRACTION", defaults.escalation_fraction
            ),
            escalation_window=_env_float(env, "EXCHANGE_ESCALATION_WINDOW", defaults.escalation_window),
            market_halt_cooldown=_env_float(
                env, "EXCHANGE_MARKET_HALT_COOLDOWN", defaults.market_halt_cooldown
            ),
            event_probability=_env_float(env, "EXCHANGE_EVENT_PROBABILITY", defaults.event_probability),
            ipo_window_hours=_env_float(env, "EXCHANGE_IPO_WINDOW_HOURS", defaults.ipo_window_hours),
            max_write_retries=_env_int(env, "EXCHANGE_MAX_WRITE_RETRIES", defaults.max_write_retries),
            rng_seed=_env_int(env, "EXCHANGE_RNG_SEED", None),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ValueError for values outside their usable range."""
        if self.tick_interval <= 0:
            raise ValueError("Tick interval must be positive")
        if not 0 < self.breaker_threshold < 1:
            raise ValueError("Breaker threshold must be between 0 and 1")
        if self.halt_cooldown <= 0 or self.market_halt_cooldown <= 0:
            raise ValueError("Halt cooldowns must be positive")
        if not 0 < self.escalation_fraction <= 1:
            raise ValueError("Escalation fraction must be in (0, 1]")
        if self.escalation_window <= 0:
            raise ValueError("Escalation window must be positive")
        if not 0 <= self.event_probability <= 1:
            raise ValueError("Event probability must be in [0, 1]")
        if self.ipo_window_hours <= 0:
            raise ValueError("IPO window must be positive")
        if self.max_write_retries < 1:
            raise ValueError("At least one write attempt is required")

    @property
    def ipo_window_seconds(self) -> float:
        return self.ipo_window_hours * 3600

    def to_dict(self) -> dict:
        return asdict(self)


def _env_str(env: Mapping[str, str], name: str) -> str:
    return env.get(name, "").strip()


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _env_str(env, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = _env_str(env, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None

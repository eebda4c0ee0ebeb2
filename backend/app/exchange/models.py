"""Data models for the simulated exchange."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class EffectType(str, Enum):
    TREND_BIAS = "trend_bias"
    INSTANT_SPIKE = "instant_spike"
    TICK_MODIFIER = "tick_modifier"


class ScopeKind(str, Enum):
    GLOBAL = "global"
    SECTOR = "sector"
    INSTRUMENT = "instrument"


class IndexType(str, Enum):
    MASTER = "master"
    SECTOR = "sector"


# --- Event scopes ---
#
# A closed set of three scope variants. Each knows its own key (used to enforce
# one live effect per scope and effect type) and which instruments it covers.


@dataclass(frozen=True, slots=True)
class GlobalScope:
    """Every active instrument in the market."""

    @property
    def kind(self) -> ScopeKind:
        return ScopeKind.GLOBAL

    @property
    def key(self) -> str:
        return "global"

    def applies_to(self, instrument: Instrument) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class SectorScope:
    """Every bot stock classified under one sector."""

    sector: str

    @property
    def kind(self) -> ScopeKind:
        return ScopeKind.SECTOR

    @property
    def key(self) -> str:
        return f"sector:{self.sector}"

    def applies_to(self, instrument: Instrument) -> bool:
        return isinstance(instrument, BotStock) and instrument.sector == self.sector


@dataclass(frozen=True, slots=True)
class InstrumentScope:
    """Exactly one instrument."""

    symbol: str

    @property
    def kind(self) -> ScopeKind:
        return ScopeKind.INSTRUMENT

    @property
    def key(self) -> str:
        return f"instrument:{self.symbol}"

    def applies_to(self, instrument: Instrument) -> bool:
        return instrument.symbol == self.symbol


EventScope = GlobalScope | SectorScope | InstrumentScope


# --- Instruments ---


@dataclass(frozen=True, slots=True)
class PricePoint:
    """One charting sample."""

    time: float  # Unix seconds
    price: float

    def to_dict(self) -> dict:
        return {"time": self.time, "price": self.price}


@dataclass(slots=True, kw_only=True)
class Instrument:
    """State shared by every simulated tradable symbol.

    Prices are floats held to cents. ``previous_close``, ``high_24h`` and
    ``low_24h`` default to the current price when not supplied.
    """

    symbol: str
    current_price: float
    base_price: float
    volatility: float
    previous_close: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    trend: Trend = Trend.NEUTRAL
    trend_strength: int = 1
    is_active: bool = True
    last_tick_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.symbol = self.symbol.upper().strip()
        if self.previous_close is None:
            self.previous_close = self.current_price
        if self.high_24h is None:
            self.high_24h = self.current_price
        if self.low_24h is None:
            self.low_24h = self.current_price

    @property
    def display_name(self) -> str:
        return self.symbol

    @property
    def change(self) -> float:
        """Absolute change since the previous close."""
        return round(self.current_price - self.previous_close, 4)

    @property
    def change_percent(self) -> float:
        """Percentage change since the previous close."""
        if not self.previous_close:
            return 0.0
        return round((self.current_price - self.previous_close) / self.previous_close * 100, 4)

    def to_dict(self) -> dict:
        """Serialize the instrument snapshot for JSON / SSE transmission."""
        return {
            "symbol": self.symbol,
            "name": self.display_name,
            "current_price": self.current_price,
            "previous_close": self.previous_close,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "change": self.change,
            "change_percent": self.change_percent,
            "trend": self.trend.value,
            "trend_strength": self.trend_strength,
            "is_active": self.is_active,
            "last_tick_at": self.last_tick_at,
        }


@dataclass(slots=True, kw_only=True)
class BotStock(Instrument):
    """Synthetic company stock that lives until deactivated."""

    company_name: str = ""
    sector: str = "general"
    sort_order: int = 0  # Display only
    description: str = ""

    @property
    def display_name(self) -> str:
        return self.company_name or self.symbol

    def to_dict(self) -> dict:
        data = Instrument.to_dict(self)
        data["kind"] = "bot"
        data["sector"] = self.sector
        data["sort_order"] = self.sort_order
        return data


@dataclass(slots=True, kw_only=True)
class PlayerIPO(Instrument):
    """A player's time-boxed stock, issued once per prestige."""

    owner_id: str
    owner_name: str = ""
    ipo_price: float
    base_points: int
    starts_at: float
    expires_at: float
    price_history: list[PricePoint] = field(default_factory=list)
    active_event_slug: str | None = None
    event_expires_at: float | None = None
    retired_at: float | None = None

    @property
    def display_name(self) -> str:
        return self.owner_name or self.owner_id

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None

    def time_remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def to_dict(self) -> dict:
        data = Instrument.to_dict(self)
        data["kind"] = "ipo"
        data["owner_id"] = self.owner_id
        data["ipo_price"] = self.ipo_price
        data["expires_at"] = self.expires_at
        return data


# --- Events ---


@dataclass(frozen=True, slots=True)
class MarketEvent:
    """Immutable event template from the catalog.

    ``rarity`` is an inverse selection weight: rarity 1 is drawn three times as
    often as rarity 3. ``is_positive`` is display-only.
    """

    slug: str
    name: str
    effect_type: EffectType
    effect_value: int
    duration_minutes: int
    is_positive: bool
    rarity: int
    scope: ScopeKind
    description: str = ""

    @property
    def is_instant(self) -> bool:
        return self.effect_type is EffectType.INSTANT_SPIKE or self.duration_minutes <= 0


@dataclass(slots=True)
class ActiveEvent:
    """A firing of a catalog event against one scope."""

    event: MarketEvent
    scope: EventScope
    activated_at: float
    expires_at: float | None  # None for instantaneous effects
    consumed: bool = False  # Instant effects: set once the spike has been applied

    @property
    def effect_type(self) -> EffectType:
        return self.event.effect_type

    @property
    def key(self) -> tuple[str, EffectType]:
        return (self.scope.key, self.event.effect_type)

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return self.consumed
        return self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "slug": self.event.slug,
            "name": self.event.name,
            "description": self.event.description,
            "effect_type": self.event.effect_type.value,
            "effect_value": self.event.effect_value,
            "is_positive": self.event.is_positive,
            "scope": self.scope.kind.value,
            "scope_key": self.scope.key,
            "activated_at": self.activated_at,
            "expires_at": self.expires_at,
        }


# --- Halts ---


@dataclass(frozen=True, slots=True)
class InstrumentHalt:
    """Trading suspension for one symbol. ``resumes_at=None`` means until resumed by hand."""

    symbol: str
    reason: str
    halted_at: float
    resumes_at: float | None

    def is_due(self, now: float) -> bool:
        return self.resumes_at is not None and self.resumes_at <= now

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "reason": self.reason,
            "halted_at": self.halted_at,
            "resumes_at": self.resumes_at,
        }


@dataclass(frozen=True, slots=True)
class MarketWideHalt:
    """Suspension of all trading."""

    reason: str
    halted_at: float
    resumes_at: float | None

    def is_due(self, now: float) -> bool:
        return self.resumes_at is not None and self.resumes_at <= now


@dataclass(frozen=True, slots=True)
class MarketStatus:
    trading_halted: bool
    halt_reason: str | None = None
    resumes_at: float | None = None
    halted_symbols: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "trading_halted": self.trading_halted,
            "halt_reason": self.halt_reason,
            "resumes_at": self.resumes_at,
            "halted_symbols": list(self.halted_symbols),
        }


# --- Indices ---


@dataclass(frozen=True, slots=True)
class IndexComponent:
    instrument_symbol: str
    weight: float
    base_price: float  # Reference price the component's relative move is measured from


@dataclass(slots=True, kw_only=True)
class MarketIndex:
    """Weighted aggregate of constituent performance."""

    symbol: str
    name: str
    index_type: IndexType
    base_value: float
    sector: str | None = None
    current_value: float | None = None
    previous_close: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    components: list[IndexComponent] = field(default_factory=list)
    last_tick_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.current_value is None:
            self.current_value = self.base_value
        if self.previous_close is None:
            self.previous_close = self.current_value
        if self.high_24h is None:
            self.high_24h = self.current_value
        if self.low_24h is None:
            self.low_24h = self.current_value

    @property
    def constituents(self) -> frozenset[str]:
        return frozenset(c.instrument_symbol for c in self.components)

    @property
    def change_percent(self) -> float:
        if not self.previous_close:
            return 0.0
        return round((self.current_value - self.previous_close) / self.previous_close * 100, 4)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "index_type": self.index_type.value,
            "sector": self.sector,
            "current_value": self.current_value,
            "previous_close": self.previous_close,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "change_percent": self.change_percent,
            "components": [
                {"symbol": c.instrument_symbol, "weight": round(c.weight, 6)}
                for c in self.components
            ],
        }


# --- Store deltas ---


@dataclass(frozen=True, slots=True)
class InstrumentDelta:
    """New state for one instrument, written compare-and-set against ``expected_tick_at``."""

    instrument: Instrument
    expected_tick_at: float

    @property
    def symbol(self) -> str:
        return self.instrument.symbol


@dataclass(frozen=True, slots=True)
class IndexDelta:
    symbol: str
    current_value: float
    previous_close: float
    high_24h: float
    low_24h: float
    computed_at: float
    base_value: float | None = None  # Set only when the constituent set was rebuilt
    components: tuple[IndexComponent, ...] | None = None


# --- IPO results ---


@dataclass(frozen=True, slots=True)
class IPOResult:
    """Terminal outcome of an IPO, handed to the prestige/reward collaborator."""

    symbol: str
    owner_id: str
    ipo_price: float
    final_price: float
    base_points: int
    multiplier: float  # Bounded
    potential_points: int
    retired_at: float
    reason: str  # "expired" | "cashed_out" | "delisted"

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "owner_id": self.owner_id,
            "ipo_price": self.ipo_price,
            "final_price": self.final_price,
            "base_points": self.base_points,
            "multiplier": self.multiplier,
            "potential_points": self.potential_points,
            "retired_at": self.retired_at,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class IPOStatus:
    """Player-facing view of an IPO: countdown, percent change and reward preview."""

    symbol: str
    owner_id: str
    ipo_price: float
    current_price: float
    high_price: float
    low_price: float
    base_points: int
    current_multiplier: float
    potential_points: int
    trend: Trend
    trend_strength: int
    active_event: dict | None
    price_history: tuple[PricePoint, ...]
    starts_at: float
    expires_at: float
    time_remaining: float
    percent_change: float
    is_halted: bool = False

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "owner_id": self.owner_id,
            "ipo_price": self.ipo_price,
            "current_price": self.current_price,
            "high_price": self.high_price,
            "low_price": self.low_price,
            "base_points": self.base_points,
            "current_multiplier": self.current_multiplier,
            "potential_points": self.potential_points,
            "trend": self.trend.value,
            "trend_strength": self.trend_strength,
            "active_event": self.active_event,
            "price_history": [p.to_dict() for p in self.price_history],
            "starts_at": self.starts_at,
            "expires_at": self.expires_at,
            "time_remaining": self.time_remaining,
            "percent_change": self.percent_change,
            "is_halted": self.is_halted,
        }

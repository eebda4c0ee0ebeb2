"""Market event selection, activation and expiry."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np

from .models import (
    ActiveEvent,
    BotStock,
    EffectType,
    EventScope,
    GlobalScope,
    Instrument,
    InstrumentScope,
    MarketEvent,
    ScopeKind,
    SectorScope,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


@dataclass(slots=True)
class EventBook:
    """Live events keyed by (scope key, effect type), plus a bounded audit history.

    The keying enforces at most one live effect per scope and effect type.
    """

    live: dict[tuple[str, EffectType], ActiveEvent] = field(default_factory=dict)
    history: deque[ActiveEvent] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))

    def put(self, event: ActiveEvent) -> ActiveEvent | None:
        """Record a live event. Returns the event it replaced, if any."""
        replaced = self.live.pop(event.key, None)
        if replaced is not None:
            self.history.append(replaced)
        self.live[event.key] = event
        return replaced

    def expire(self, now: float) -> list[ActiveEvent]:
        expired = [e for e in self.live.values() if e.is_expired(now)]
        for event in expired:
            del self.live[event.key]
            self.history.append(event)
        return expired

    def effects_for(self, instrument: Instrument) -> list[ActiveEvent]:
        """Live events whose scope covers the instrument, oldest first."""
        return sorted(
            (e for e in self.live.values() if e.scope.applies_to(instrument)),
            key=lambda e: e.activated_at,
        )

    def active(self) -> list[ActiveEvent]:
        return sorted(self.live.values(), key=lambda e: e.activated_at)

    def consume_instant(self) -> None:
        """Mark applied instant spikes so they expire on the next tick."""
        for event in self.live.values():
            if event.expires_at is None:
                event.consumed = True

    def __len__(self) -> int:
        return len(self.live)


@dataclass(frozen=True, slots=True)
class EventTick:
    expired: list[ActiveEvent] = field(default_factory=list)
    activated: list[ActiveEvent] = field(default_factory=list)
    replaced: list[ActiveEvent] = field(default_factory=list)


class EventDirector:
    """Expires live events and randomly fires new ones from the catalog.

    Each tick there is an ``activation_probability`` chance of one new event.
    Templates are drawn with weight ``1 / rarity``; the scope is then chosen to
    match the template's declared scope among the eligible (active, non-halted)
    instruments.
    """

    def __init__(
        self,
        catalog: Sequence[MarketEvent],
        rng: np.random.Generator | None = None,
        activation_probability: float = 0.02,
    ) -> None:
        self._catalog = list(catalog)
        self._rng = rng if rng is not None else np.random.default_rng()
        self._probability = activation_probability

    @property
    def catalog(self) -> list[MarketEvent]:
        return list(self._catalog)

    def expire(self, now: float, book: EventBook) -> EventTick:
        """Expire due events without activating anything."""
        expired = book.expire(now)
        for event in expired:
            logger.debug("Event expired: %s on %s", event.event.slug, event.scope.key)
        return EventTick(expired=expired)

    def tick(self, now: float, book: EventBook, eligible: Iterable[Instrument] = ()) -> EventTick:
        """Expire due events, then maybe activate one new event."""
        result = self.expire(now, book)
        if not self._catalog or self._rng.random() >= self._probability:
            return result

        template = self.pick_template()
        scope = self.pick_scope(template, list(eligible))
        if scope is None:
            logger.debug("No eligible scope for event %s", template.slug)
            return result

        replaced = book.live.get((scope.key, template.effect_type))
        result.activated.append(self.activate(book, template, scope, now))
        if replaced is not None:
            result.replaced.append(replaced)
        return result

    def activate(
        self,
        book: EventBook,
        template: MarketEvent,
        scope: EventScope,
        now: float,
    ) -> ActiveEvent:
        """Fire ``template`` against ``scope``, replacing any live effect of the same type there."""
        expires_at = None if template.is_instant else now + template.duration_minutes * 60
        event = ActiveEvent(event=template, scope=scope, activated_at=now, expires_at=expires_at)
        replaced = book.put(event)
        if replaced is not None:
            logger.info(
                "Event %s replaced %s on %s", template.slug, replaced.event.slug, scope.key
            )
        else:
            logger.info("Event activated: %s on %s", template.slug, scope.key)
        return event

    def pick_template(self) -> MarketEvent:
        weights = np.array([1.0 / max(1, e.rarity) for e in self._catalog])
        weights /= weights.sum()
        return self._catalog[int(self._rng.choice(len(self._catalog), p=weights))]

    def pick_scope(self, template: MarketEvent, eligible: Sequence[Instrument]) -> EventScope | None:
        if not eligible:
            return None
        if template.scope is ScopeKind.GLOBAL:
            return GlobalScope()
        if template.scope is ScopeKind.SECTOR:
            sectors = sorted({i.sector for i in eligible if isinstance(i, BotStock)})
            if not sectors:
                return None
            return SectorScope(sectors[int(self._rng.integers(len(sectors)))])
        if template.scope is ScopeKind.INSTRUMENT:
            symbols = sorted(i.symbol for i in eligible)
            return InstrumentScope(symbols[int(self._rng.integers(len(symbols)))])
        raise ValueError(f"Unknown event scope: {template.scope!r}")

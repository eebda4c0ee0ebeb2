"""Player IPO lifecycle: launch, price history, retirement and reward."""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Callable, Collection, Iterable

from .errors import DuplicateIPOError, IPOEligibilityError
from .models import ActiveEvent, InstrumentScope, IPOResult, IPOStatus, PlayerIPO, PricePoint, Trend
from .store import MarketStore

logger = logging.getLogger(__name__)

IPO_WINDOW_HOURS = 8
MIN_NET_WORTH = 100_000
NET_WORTH_PER_PRICE_UNIT = 10_000  # $100K net worth -> $10/share
IPO_VOLATILITY = 0.05
HISTORY_LIMIT = 100
MIN_MULTIPLIER = 0.5
MAX_MULTIPLIER = 2.5

RewardSink = Callable[[IPOResult], None]

_VOWELS = re.compile(r"[AEIOU]")


def generate_ticker(username: str, taken: Collection[str] = ()) -> str:
    """Derive a 3-4 letter ticker from a username, avoiding symbols in ``taken``.

    Consonants come first: three consonants plus the first vowel, or two
    consonants, the first vowel and the last letter. Short names are padded
    with X. Collisions get a numeric suffix.
    """
    clean = re.sub(r"[^A-Z]", "", username.upper())
    consonants = _VOWELS.sub("", clean)
    vowel_match = _VOWELS.search(clean)
    first_vowel = vowel_match.group(0) if vowel_match else ""

    if len(consonants) >= 3:
        base = consonants[:3] + first_vowel
    elif len(consonants) >= 2:
        base = consonants[:2] + first_vowel + clean[-1]
    else:
        base = clean[:4]
    base = base[:4].ljust(3, "X")

    if base not in taken:
        return base
    stem = base[:3]
    suffix = 1
    while f"{stem}{suffix}" in taken:
        suffix += 1
    return f"{stem}{suffix}"


def bounded_multiplier(
    ipo_price: float,
    price: float,
    min_multiplier: float = MIN_MULTIPLIER,
    max_multiplier: float = MAX_MULTIPLIER,
) -> float:
    if ipo_price <= 0:
        return 1.0
    return min(max(price / ipo_price, min_multiplier), max_multiplier)


def potential_points(
    base_points: int,
    ipo_price: float,
    price: float,
    min_multiplier: float = MIN_MULTIPLIER,
    max_multiplier: float = MAX_MULTIPLIER,
) -> int:
    """Reward for finishing at ``price``: base points times the bounded multiplier, floored."""
    multiplier = bounded_multiplier(ipo_price, price, min_multiplier, max_multiplier)
    # Round first so 100 * 1.15 does not floor to 114
    return math.floor(round(base_points * multiplier, 6))


class IPOLifecycle:
    """Creates, prices and retires player IPOs.

    While live, an IPO is simulated by the MarketClock exactly like a bot stock.
    This class owns what is specific to IPOs: issuance, the bounded price
    history, the terminal reward and the player-facing status view.
    """

    def __init__(
        self,
        store: MarketStore,
        reward_sink: RewardSink | None = None,
        *,
        window_seconds: float = IPO_WINDOW_HOURS * 3600,
        history_limit: int = HISTORY_LIMIT,
        min_multiplier: float = MIN_MULTIPLIER,
        max_multiplier: float = MAX_MULTIPLIER,
        min_net_worth: float = MIN_NET_WORTH,
        volatility: float = IPO_VOLATILITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._reward_sink = reward_sink
        self._window = window_seconds
        self._history_limit = history_limit
        self._min_multiplier = min_multiplier
        self._max_multiplier = max_multiplier
        self._min_net_worth = min_net_worth
        self._volatility = volatility
        self._clock = clock

    # --- Issuance ---

    def launch(
        self,
        owner_id: str,
        username: str,
        net_worth: float,
        base_points: int,
    ) -> PlayerIPO:
        """Issue a new IPO for a player at prestige time.

        Raises DuplicateIPOError (carrying the untouched existing IPO) if the
        player already has one live, IPOEligibilityError if net worth is too low.
        """
        snapshot = self._store.snapshot()
        existing = snapshot.active_ipo_for(owner_id)
        if existing is not None:
            raise DuplicateIPOError(existing)
        if net_worth < self._min_net_worth:
            raise IPOEligibilityError(
                f"Need at least ${self._min_net_worth:,.0f} net worth to launch an IPO"
            )

        now = self._clock()
        price = max(0.01, round(net_worth / NET_WORTH_PER_PRICE_UNIT, 2))
        ipo = PlayerIPO(
            symbol=generate_ticker(username, snapshot.active_symbols()),
            current_price=price,
            base_price=price,
            volatility=self._volatility,
            trend=Trend.NEUTRAL,
            trend_strength=1,
            last_tick_at=now,
            owner_id=owner_id,
            owner_name=username,
            ipo_price=price,
            base_points=base_points,
            starts_at=now,
            expires_at=now + self._window,
            price_history=[PricePoint(time=now, price=price)],
        )
        self._store.create_ipo(ipo)
        logger.info(
            "IPO launched: %s for %s at %.2f (%d base points)", ipo.symbol, owner_id, price, base_points
        )
        return ipo

    def active_ipo(self, owner_id: str) -> PlayerIPO | None:
        return self._store.snapshot().active_ipo_for(owner_id)

    # --- During the window ---

    def record_price(self, ipo: PlayerIPO, now: float) -> None:
        """Append a chart sample, dropping the oldest beyond the history limit."""
        ipo.price_history.append(PricePoint(time=now, price=ipo.current_price))
        overflow = len(ipo.price_history) - self._history_limit
        if overflow > 0:
            del ipo.price_history[:overflow]

    @staticmethod
    def annotate_event(ipo: PlayerIPO, effects: Iterable[ActiveEvent]) -> None:
        """Show at most one event on the IPO: the newest covering it, instrument-scoped first."""
        effects = list(effects)
        own = [e for e in effects if isinstance(e.scope, InstrumentScope)]
        candidates = own or effects
        if not candidates:
            ipo.active_event_slug = None
            ipo.event_expires_at = None
            return
        newest = max(candidates, key=lambda e: e.activated_at)
        ipo.active_event_slug = newest.event.slug
        ipo.event_expires_at = newest.expires_at

    @staticmethod
    def is_expired(ipo: PlayerIPO, now: float) -> bool:
        return ipo.expires_at <= now

    # --- Retirement ---

    def retire(self, ipo: PlayerIPO, now: float, reason: str = "expired") -> IPOResult:
        """Take the IPO out of simulation for good and compute its reward."""
        multiplier = bounded_multiplier(
            ipo.ipo_price, ipo.current_price, self._min_multiplier, self._max_multiplier
        )
        points = potential_points(
            ipo.base_points, ipo.ipo_price, ipo.current_price, self._min_multiplier, self._max_multiplier
        )
        ipo.is_active = False
        ipo.retired_at = now
        ipo.active_event_slug = None
        ipo.event_expires_at = None
        logger.info(
            "IPO %s retired (%s) at %.2f: x%.2f -> %d points",
            ipo.symbol, reason, ipo.current_price, multiplier, points,
        )
        return IPOResult(
            symbol=ipo.symbol,
            owner_id=ipo.owner_id,
            ipo_price=ipo.ipo_price,
            final_price=ipo.current_price,
            base_points=ipo.base_points,
            multiplier=round(multiplier, 4),
            potential_points=points if reason != "delisted" else 0,
            retired_at=now,
            reason=reason,
        )

    def award(self, result: IPOResult) -> None:
        """Hand a terminal result to the prestige/reward collaborator."""
        if self._reward_sink is None or result.reason == "delisted":
            return
        try:
            self._reward_sink(result)
        except Exception:
            logger.exception("Reward hand-off failed for IPO %s (owner %s)", result.symbol, result.owner_id)

    def replay_points(self, ipo: PlayerIPO) -> int:
        """Recompute the reward from the last charted price."""
        if not ipo.price_history:
            return potential_points(
                ipo.base_points, ipo.ipo_price, ipo.current_price, self._min_multiplier, self._max_multiplier
            )
        terminal = ipo.price_history[-1].price
        return potential_points(
            ipo.base_points, ipo.ipo_price, terminal, self._min_multiplier, self._max_multiplier
        )

    # --- Player view ---

    def status(
        self,
        ipo: PlayerIPO,
        now: float | None = None,
        events: Iterable[ActiveEvent] = (),
        halted: bool = False,
    ) -> IPOStatus:
        now = self._clock() if now is None else now
        active_event = None
        if ipo.active_event_slug and (ipo.event_expires_at is None or ipo.event_expires_at > now):
            for event in events:
                if event.event.slug == ipo.active_event_slug:
                    active_event = event.to_dict()
                    break
            else:
                active_event = {"slug": ipo.active_event_slug, "expires_at": ipo.event_expires_at}

        multiplier = bounded_multiplier(
            ipo.ipo_price, ipo.current_price, self._min_multiplier, self._max_multiplier
        )
        percent = (ipo.current_price - ipo.ipo_price) / ipo.ipo_price * 100 if ipo.ipo_price else 0.0
        return IPOStatus(
            symbol=ipo.symbol,
            owner_id=ipo.owner_id,
            ipo_price=ipo.ipo_price,
            current_price=ipo.current_price,
            high_price=ipo.high_24h,
            low_price=ipo.low_24h,
            base_points=ipo.base_points,
            current_multiplier=round(multiplier, 2),
            potential_points=potential_points(
                ipo.base_points, ipo.ipo_price, ipo.current_price, self._min_multiplier, self._max_multiplier
            ),
            trend=ipo.trend,
            trend_strength=ipo.trend_strength,
            active_event=active_event,
            price_history=tuple(ipo.price_history),
            starts_at=ipo.starts_at,
            expires_at=ipo.expires_at,
            time_remaining=ipo.time_remaining(now),
            percent_change=round(percent, 2),
            is_halted=halted,
        )

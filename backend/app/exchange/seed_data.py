"""Seed universe: bot stocks, sector ETFs, the master index and the event catalog."""

from __future__ import annotations

import logging
import time

from .indices import IndexCalculator
from .models import BotStock, EffectType, IndexType, MarketEvent, MarketIndex, ScopeKind
from .store import MarketStore

logger = logging.getLogger(__name__)

# (symbol, company, sector, base price, per-tick volatility, description)
SEED_STOCKS: list[tuple[str, str, str, float, float, str]] = [
    # Tech
    ("GOGGL", "Goggle Inc", "tech", 2850.00, 0.025, "Surveillance tech empire. Tracks everything, sells to everyone."),
    ("FAKEBOOK", "FakeBook", "tech", 485.00, 0.030, "Identity theft network disguised as social media."),
    ("DRKWEB", "DarkWeave", "tech", 195.00, 0.035, "Dark web hosting. Untraceable servers for the discerning criminal."),
    ("CRYPT0", "CryptØ", "tech", 312.00, 0.045, "Untraceable crypto exchange. Not your keys, not your problem."),
    ("HACKR", "HackrBox", "tech", 78.00, 0.040, "Stolen data storage. Premium leaked files service."),
    ("BURNER", "BurnerTech", "tech", 156.00, 0.028, "Disposable phones and encrypted comms for the paranoid."),
    # Finance
    ("WASHD", "WashCo Holdings", "finance", 425.00, 0.020, "Money laundering specialists. We clean your dirty money."),
    ("OFFSH", "OffShore Capital", "finance", 890.00, 0.018, "Hidden accounts and tax evasion. Swiss quality, Cayman prices."),
    ("PAYDAY", "PayDay Loans", "finance", 45.00, 0.050, "Loan sharks with a corporate facade. 400% APR is just the start."),
    ("SHADDW", "Shadow Bank", "finance", 567.00, 0.022, "Underground banking network. No questions asked."),
    ("GOLDVLT", "GoldVault Inc", "finance", 234.00, 0.015, 'Secure storage for "assets" of questionable origin.'),
    ("CASINO", "Lucky Mint Casino", "finance", 178.00, 0.038, "Gambling and money cleaning. The house always launders."),
    # Energy
    ("SIPHON", "Siphon Energy", "energy", 89.00, 0.032, "Stolen fuel and pipeline taps. Gas prices are a suggestion."),
    ("GRIDX", "GridJack Corp", "energy", 145.00, 0.040, "Power grid exploits. We turn off your competitors."),
    ("BLACKOUT", "BlackOut Systems", "energy", 267.00, 0.028, "Controls power for heists. Darkness on demand."),
    ("JUNKYARD", "JunkYard Motors", "energy", 34.00, 0.055, "Chop shops and stolen parts. VIN? What VIN?"),
    ("BTTRY", "Hot Battery Inc", "energy", 112.00, 0.042, "Stolen EV batteries. Green crime for a green future."),
    # Consumer
    ("AMAZONE", "Amazone Prime", "consumer", 3420.00, 0.022, "Contraband delivery network. Same day shipping, no questions."),
    ("LUXFAKE", "LuxFake Inc", "consumer", 567.00, 0.025, "Counterfeit luxury goods. Real fake quality."),
    ("SILKRD", "SilkRoad Retail", "consumer", 234.00, 0.048, "Dark web marketplace. Everything ships from an undisclosed location."),
    ("PAWNIT", "PawnIt Chain", "consumer", 28.00, 0.035, "Fencing stolen goods since 1987. No receipt needed."),
    ("BOOZE", "BootLeg Spirits", "consumer", 78.00, 0.030, "Untaxed alcohol with creative labels."),
    ("SMOKEZ", "SmokeScreen Co", "consumer", 56.00, 0.028, "Contraband tobacco. Warning labels are optional."),
    # Health
    ("PHARMA", "PharmaBro Inc", "health", 445.00, 0.035, "Black market medications. Same pills, different price."),
    ("ENHANCE", "EnhanceCorp", "health", 123.00, 0.045, "Performance drugs and steroids. Gains guaranteed."),
    ("DOCOFF", "Doc-Off-Books", "health", 89.00, 0.032, "Unlicensed clinics. Cash only, no records."),
    ("PAINAWAY", "PainAway Labs", "health", 234.00, 0.038, '"Pain management" specialists with flexible prescriptions.'),
    ("ORGANX", "OrganX Trade", "health", 890.00, 0.050, "Black market organs. Fresh, imported, and discreet."),
    ("LABRAT", "LabRat Testing", "health", 45.00, 0.060, "Fake medical tests. Need clean results? We got you."),
    # Industrial
    ("HEISTCO", "HeistCo Supply", "industrial", 178.00, 0.028, "Heist equipment supplier. Professional grade tools for professionals."),
    ("GETAWAY", "GetAway Motors", "industrial", 345.00, 0.032, "Custom getaway vehicles. Fast, armored, untraceable."),
    ("ARMORX", "ArmorX Defense", "industrial", 567.00, 0.025, "Illegal weapons and armor. Second amendment plus."),
    ("SAFECRK", "SafeCrack Inc", "industrial", 89.00, 0.040, "Lock picks and safe cracking tools. Every lock has a key."),
    ("VANISH", "Vanish Logistics", "industrial", 234.00, 0.030, "Evidence disposal. We make problems disappear."),
    ("PRINTS", "NoPrints Tech", "industrial", 156.00, 0.035, "Anti-forensics and clean crews. Leave no trace."),
]

# sector -> (ETF symbol, name)
SECTOR_INDICES: dict[str, tuple[str, str]] = {
    "tech": ("MTEK", "MintTech ETF"),
    "finance": ("MFIN", "MintFinance ETF"),
    "energy": ("MNRG", "MintEnergy ETF"),
    "consumer": ("MCON", "MintConsumer ETF"),
    "health": ("MHLT", "MintHealth ETF"),
    "industrial": ("MIND", "MintIndustrial ETF"),
}

MASTER_INDEX = ("MINT35", "Mint 35 Index")
MASTER_BASE_VALUE = 1000.0
SECTOR_BASE_VALUE = 100.0

_G, _S, _I = ScopeKind.GLOBAL, ScopeKind.SECTOR, ScopeKind.INSTRUMENT

EVENT_CATALOG: list[MarketEvent] = [
    # Positive
    MarketEvent("bull-run", "Bull Run", EffectType.TREND_BIAS, 5, 45, True, 2, _G,
                "Market momentum is strong! Prices trending up."),
    MarketEvent("sector-boom", "Sector Rally", EffectType.TREND_BIAS, 10, 30, True, 2, _S,
                "A whole sector is surging!"),
    MarketEvent("earnings-beat", "Earnings Beat", EffectType.INSTANT_SPIKE, 12, 0, True, 3, _I,
                "The company crushed expectations!"),
    MarketEvent("analyst-upgrade", "Analyst Upgrade", EffectType.TICK_MODIFIER, 3, 20, True, 2, _I,
                "Wall Street loves this one now."),
    MarketEvent("fed-rate-cut", "Fed Rate Cut", EffectType.TREND_BIAS, 5, 40, True, 3, _G,
                "The Fed cut rates! Markets rally."),
    MarketEvent("viral-news", "Viral News", EffectType.INSTANT_SPIKE, 15, 0, True, 3, _I,
                "The company is trending!"),
    # Negative
    MarketEvent("bear-market", "Bear Market", EffectType.TREND_BIAS, -5, 45, False, 2, _G,
                "Market sentiment is turning negative."),
    MarketEvent("sector-crash", "Sector Slump", EffectType.TREND_BIAS, -10, 30, False, 2, _S,
                "A whole sector is tanking."),
    MarketEvent("earnings-miss", "Earnings Miss", EffectType.INSTANT_SPIKE, -12, 0, False, 3, _I,
                "The company disappointed investors."),
    MarketEvent("analyst-downgrade", "Analyst Downgrade", EffectType.TICK_MODIFIER, -3, 20, False, 2, _I,
                "Wall Street turned on this one."),
    MarketEvent("fed-rate-hike", "Fed Rate Hike", EffectType.TREND_BIAS, -5, 40, False, 3, _G,
                "The Fed raised rates. Ouch."),
    # Chaos
    MarketEvent("meme-stock-surge", "Meme Stock Surge", EffectType.TICK_MODIFIER, 10, 20, True, 3, _I,
                "Wild swings incoming!"),
    MarketEvent("market-holiday", "Market Holiday", EffectType.TREND_BIAS, 0, 30, True, 1, _G,
                "Quiet holiday trading."),
]


def seed_store(
    store: MarketStore,
    calculator: IndexCalculator | None = None,
    now: float | None = None,
) -> None:
    """Load the seed universe into an empty store, with index weights already built."""
    now = time.time() if now is None else now
    calculator = calculator if calculator is not None else IndexCalculator()

    stocks = [
        BotStock(
            symbol=symbol,
            company_name=company,
            sector=sector,
            current_price=price,
            base_price=price,
            volatility=volatility,
            description=description,
            sort_order=order,
            last_tick_at=now,
        )
        for order, (symbol, company, sector, price, volatility, description) in enumerate(SEED_STOCKS)
    ]
    for stock in stocks:
        store.add_instrument(stock)

    master_symbol, master_name = MASTER_INDEX
    indices = [
        MarketIndex(
            symbol=master_symbol,
            name=master_name,
            index_type=IndexType.MASTER,
            base_value=MASTER_BASE_VALUE,
            last_tick_at=now,
        )
    ]
    indices.extend(
        MarketIndex(
            symbol=symbol,
            name=name,
            index_type=IndexType.SECTOR,
            sector=sector,
            base_value=SECTOR_BASE_VALUE,
            last_tick_at=now,
        )
        for sector, (symbol, name) in SECTOR_INDICES.items()
    )
    for index in indices:
        calculator.rebuild(index, stocks)
        store.add_index(index)

    logger.info("Seeded %d stocks and %d indices", len(stocks), len(indices))

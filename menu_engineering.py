"""
Menu Engineering Scoring Engine
===============================

Transparent heuristics for weekly menu analysis:
- Compute core metrics per item (avg price, unit/total margin, food cost %)
- Rank items within the week (popularity, margin, profit percentiles)
- Classify into quadrants (Star / Plowhorse / Puzzle / Dog)
- Recommend an action per item, with guardrailed price suggestions
- Explain every recommendation and summarise the run

The engine is a pure batch computation: the same ItemInput list and
ScoringSettings always produce the same ScoringResult. Nothing here reads
ambient configuration or prints.
"""

import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from scoring_models import (
    CONFIDENCE_LEVELS,
    CategoryStats,
    ItemInput,
    ItemMetrics,
    ScoringResult,
    ScoringSettings,
    ScoringSummary,
    round_money,
)


# =============================================================================
# CONFIG – Defaults and channel presets
# =============================================================================

DEFAULT_SETTINGS = ScoringSettings()

UNCATEGORIZED = "Uncategorized"

# Category ceiling for price suggestions when premium pricing is off
CATEGORY_CEILING_PERCENTILE = 85

TOP_ACTIONS_LIMIT = 10
HIGHLIGHT_LIMIT = 3

# Location channel presets, applied during onboarding and editable later.
# Percent fields are in percent (8 = 8%).
CHANNEL_PRESETS: Dict[str, Dict[str, Any]] = {
    "BAR_KITCHEN": {
        "label": "Bar & Kitchen",
        "description": "Bar with food menu, gastropub",
        "target_food_cost_pct": 30,
        "popularity_threshold": 60,
        "margin_threshold": 60,
        "min_qty_threshold": 10,
        "max_price_increase_pct": 8,
        "max_price_increase_amt": 2.0,
        "allow_premium_pricing": False,
        "focus_line": "This week's focus: {action} to boost bar food margins.",
    },
    "FULL_SERVICE": {
        "label": "Full Service Restaurant",
        "description": "Sit-down dining with table service",
        "target_food_cost_pct": 32,
        "popularity_threshold": 60,
        "margin_threshold": 60,
        "min_qty_threshold": 10,
        "max_price_increase_pct": 10,
        "max_price_increase_amt": 3.0,
        "allow_premium_pricing": False,
        "focus_line": "This week's focus: {action} to optimize your dining menu.",
    },
    "FAST_CASUAL": {
        "label": "Fast Casual",
        "description": "Counter service, quick turns",
        "target_food_cost_pct": 28,
        "popularity_threshold": 60,
        "margin_threshold": 60,
        "min_qty_threshold": 10,
        "max_price_increase_pct": 6,
        "max_price_increase_amt": 1.5,
        "allow_premium_pricing": False,
        "focus_line": "This week's focus: {action} to drive fast-casual efficiency.",
    },
    "CAFE": {
        "label": "Cafe / Coffee Shop",
        "description": "Coffee, pastries, light fare",
        "target_food_cost_pct": 25,
        "popularity_threshold": 60,
        "margin_threshold": 60,
        "min_qty_threshold": 10,
        "max_price_increase_pct": 6,
        "max_price_increase_amt": 1.0,
        "allow_premium_pricing": False,
        "focus_line": "This week's focus: {action} to maximize cafe margins.",
    },
    "BREWERY": {
        "label": "Brewery / Taproom",
        "description": "Craft beer focus with food",
        "target_food_cost_pct": 28,
        "popularity_threshold": 60,
        "margin_threshold": 60,
        "min_qty_threshold": 10,
        "max_price_increase_pct": 8,
        "max_price_increase_amt": 2.0,
        "allow_premium_pricing": False,
        "focus_line": "This week's focus: {action} to complement your brews.",
    },
    "OTHER": {
        "label": "Other",
        "description": "Custom configuration",
        "target_food_cost_pct": 30,
        "popularity_threshold": 60,
        "margin_threshold": 60,
        "min_qty_threshold": 10,
        "max_price_increase_pct": 8,
        "max_price_increase_amt": 2.0,
        "allow_premium_pricing": False,
        "focus_line": "This week's focus: {action} to improve menu performance.",
    },
}

_SETTINGS_FIELDS = (
    "target_food_cost_pct",
    "min_qty_threshold",
    "popularity_threshold",
    "margin_threshold",
    "allow_premium_pricing",
    "max_price_increase_pct",
    "max_price_increase_amt",
)


def settings_from_preset(channel: str, **overrides) -> ScoringSettings:
    """Build ScoringSettings from a channel preset (unknown channels fall back to BAR_KITCHEN)."""
    preset = CHANNEL_PRESETS.get(str(channel).upper(), CHANNEL_PRESETS["BAR_KITCHEN"])
    values = {k: preset[k] for k in _SETTINGS_FIELDS}
    values.update(overrides)
    return ScoringSettings(**values)


def resolve_settings(settings: Union[ScoringSettings, Dict[str, Any], None]) -> ScoringSettings:
    """Accept full settings, a dict of overrides on the defaults, or None."""
    if settings is None:
        return DEFAULT_SETTINGS
    if isinstance(settings, ScoringSettings):
        return settings
    unknown = [k for k in settings if k not in _SETTINGS_FIELDS]
    if unknown:
        raise ValueError(f"❌ CRITICAL: Unknown scoring settings: {unknown}")
    return replace(DEFAULT_SETTINGS, **settings)


# =============================================================================
# PERCENTILE RANKER
# =============================================================================

def percentile_ranks(items: Sequence[Any], metric: Callable[[Any], float]) -> List[float]:
    """
    Rank-based percentile (0-100) of metric(item) for every item.

    Items are ranked ascending and tied values share the midpoint of their
    tied rank range, so the result does not depend on input order:

        percentile = (rank - 1) / (n - 1) * 100

    For distinct values this is the share of peers with a strictly lower
    value. A single item has no peer and is placed at 100.
    """
    n = len(items)
    if n == 0:
        return []
    if n == 1:
        return [100.0]

    values = pd.Series([float(metric(item)) for item in items])
    ranks = values.rank(method="average", ascending=True)
    return [float((rank - 1) / (n - 1) * 100) for rank in ranks]


def _percentile_value(sorted_values: np.ndarray, percentile: float) -> float:
    """Floor-index percentile of an ascending array (0 for an empty array)."""
    if len(sorted_values) == 0:
        return 0.0
    index = int(np.floor((percentile / 100) * (len(sorted_values) - 1)))
    return float(sorted_values[min(index, len(sorted_values) - 1)])


# =============================================================================
# CATEGORY STATISTICS (pricing guardrails)
# =============================================================================

def calculate_category_stats(items: Iterable[ItemInput]) -> Dict[str, CategoryStats]:
    """Median/85th percentile prices and margins per category, over items with sales."""
    by_category: Dict[str, List[ItemInput]] = {}
    for item in items:
        by_category.setdefault(item.category or UNCATEGORIZED, []).append(item)

    stats = {}
    for category, cat_items in by_category.items():
        sold = [i for i in cat_items if i.quantity_sold > 0]
        prices = np.sort(np.array([i.net_sales / i.quantity_sold for i in sold], dtype=float))
        margins = np.sort(np.array(
            [i.net_sales / i.quantity_sold - i.unit_food_cost for i in sold], dtype=float
        ))
        food_cost_pcts = [
            i.unit_food_cost / (i.net_sales / i.quantity_sold) * 100
            for i in sold if i.net_sales > 0
        ]

        stats[category] = CategoryStats(
            category=category,
            count=len(cat_items),
            median_price=_percentile_value(prices, 50),
            median_margin=_percentile_value(margins, 50),
            p85_price=_percentile_value(prices, CATEGORY_CEILING_PERCENTILE),
            avg_food_cost_pct=float(np.mean(food_cost_pcts)) if food_cost_pcts else 0.0,
        )

    return stats


# =============================================================================
# QUADRANT CLASSIFIER + CONFIDENCE SCORER
# =============================================================================

def determine_quadrant(popularity_percentile: float,
                       margin_percentile: float,
                       settings: ScoringSettings = DEFAULT_SETTINGS) -> str:
    """2x2 matrix over two independent cut lines; boundary values count as high."""
    is_high_popularity = popularity_percentile >= settings.popularity_threshold
    is_high_margin = margin_percentile >= settings.margin_threshold

    if is_high_popularity and is_high_margin:
        return "STAR"
    if is_high_popularity:
        return "PLOWHORSE"
    if is_high_margin:
        return "PUZZLE"
    return "DOG"


def determine_confidence(quantity_sold: float,
                         settings: ScoringSettings = DEFAULT_SETTINGS) -> str:
    if quantity_sold >= settings.min_qty_threshold * 2:
        return "HIGH"
    if quantity_sold >= settings.min_qty_threshold:
        return "MEDIUM"
    return "LOW"


# =============================================================================
# PRICE SUGGESTION ENGINE
# =============================================================================

@dataclass(frozen=True)
class PriceSuggestion:
    suggested_price: float
    change_amount: float
    change_pct: float
    guardrail: str  # TARGET, PCT_CAP, ABS_CAP or CATEGORY_P85


def _floor_cents(value: float) -> float:
    return math.floor(value * 100 + 1e-9) / 100


def suggest_price(current_price: float,
                  unit_food_cost: float,
                  category_stats: Optional[CategoryStats],
                  settings: ScoringSettings = DEFAULT_SETTINGS) -> Optional[PriceSuggestion]:
    """
    Price increase that moves food cost toward target, bounded by guardrails.

    The uncapped increase is whatever brings food cost % down to target.
    It is then bounded by every applicable ceiling and the tightest one wins:
    - max_price_increase_pct of the current price
    - max_price_increase_amt (absolute)
    - the category's 85th percentile price (unless premium pricing is allowed)

    Everything is measured from the true (unrounded) average price. The
    suggested price is floored to whole cents so it never lands past a
    guardrail. Returns None when no increase survives.
    """
    if current_price <= 0:
        return None

    target_price = unit_food_cost / (settings.target_food_cost_pct / 100)
    ceilings = [
        ("TARGET", target_price - current_price),
        ("PCT_CAP", current_price * settings.max_price_increase_pct / 100),
        ("ABS_CAP", settings.max_price_increase_amt),
    ]
    if category_stats is not None and not settings.allow_premium_pricing:
        ceilings.append(("CATEGORY_P85", category_stats.p85_price - current_price))

    # min() keeps the first entry on ties, so an exact target beats a cap
    guardrail, increase = min(ceilings, key=lambda c: c[1])
    suggested = _floor_cents(current_price + increase)
    change = suggested - current_price
    change_amount = _floor_cents(change)
    if change_amount <= 0:
        return None

    return PriceSuggestion(
        suggested_price=suggested,
        change_amount=change_amount,
        change_pct=round_money(change / current_price * 100),
        guardrail=guardrail,
    )


# =============================================================================
# ACTION RECOMMENDER
# =============================================================================

# quadrant -> (action at HIGH/MEDIUM confidence, action at LOW confidence)
# Low-volume signals are steered to conservative actions.
_CANDIDATE_ACTIONS = {
    "STAR": ("PROMOTE", "KEEP"),
    "PLOWHORSE": ("REPRICE", "REPOSITION"),
    "PUZZLE": ("REPOSITION", "REPOSITION"),
    "DOG": ("REMOVE", "KEEP"),
}

# Anchors are never removed or repriced
_ANCHOR_OVERRIDES = {"REMOVE": "KEEP_ANCHOR", "REPRICE": "KEEP_ANCHOR", "KEEP": "KEEP_ANCHOR"}

# Every (quadrant, confidence, is_anchor) combination, enumerable for tests
ACTION_TABLE: Dict[Tuple[str, str, bool], str] = {
    (quadrant, confidence, is_anchor): (
        _ANCHOR_OVERRIDES.get(action, action) if is_anchor else action
    )
    for quadrant, (confident_action, low_action) in _CANDIDATE_ACTIONS.items()
    for confidence in CONFIDENCE_LEVELS
    for is_anchor in (False, True)
    for action in [low_action if confidence == "LOW" else confident_action]
}


def recommend_action(quadrant: str,
                     confidence: str,
                     is_anchor: bool,
                     food_cost_above_target: bool = False,
                     has_price_room: bool = False,
                     priced_below_category_median: bool = False) -> str:
    """
    Look up the candidate action, then refine it with the item's facts:
    - PROMOTE becomes KEEP when the star is already priced at/above its category median
    - REPRICE needs a food cost gap and a surviving price suggestion, else REPOSITION
    - a confident PUZZLE whose food cost is over target is a cost problem (REWORK_COST)
    """
    action = ACTION_TABLE[(quadrant, confidence, bool(is_anchor))]

    if action == "PROMOTE" and not priced_below_category_median:
        return "KEEP_ANCHOR" if is_anchor else "KEEP"
    if action == "REPRICE" and not (food_cost_above_target and has_price_room):
        return "REPOSITION"
    if (action == "REPOSITION" and quadrant == "PUZZLE"
            and confidence != "LOW" and food_cost_above_target):
        return "REWORK_COST"
    return action


def estimate_impact(action: str,
                    price_change_amount: Optional[float],
                    quantity_sold: float,
                    total_margin: float) -> float:
    """Weekly currency impact used to rank actions across items."""
    if action == "REPRICE" and price_change_amount:
        return price_change_amount * quantity_sold
    if action == "REMOVE":
        # Margin currently tied up in an underperforming slot
        return abs(total_margin)
    if action == "REPOSITION":
        return total_margin
    return 0.0


# =============================================================================
# EXPLANATION GENERATOR
# =============================================================================

_QUADRANT_NARRATIVE = {
    "STAR": "High popularity and high margin - a star performer",
    "PLOWHORSE": "Popular item with below-average margin",
    "PUZZLE": "Good margin but underperforming on sales",
    "DOG": "Low popularity and low margin",
}

_GUARDRAIL_NOTES = {
    "TARGET": "Increase sized to bring food cost back to the {target:g}% target",
    "PCT_CAP": "Increase capped at the {pct:g}% maximum price increase",
    "ABS_CAP": "Increase capped at the ${amt:.2f} maximum price increase",
    "CATEGORY_P85": "Price held at the category 85th percentile (${p85:.2f}) to avoid sticker shock",
}


def generate_explanation(item: ItemMetrics,
                         total_items: int,
                         settings: ScoringSettings = DEFAULT_SETTINGS,
                         category_stats: Optional[CategoryStats] = None) -> Tuple[str, ...]:
    """
    Ordered, deterministic justification lines:
    rank/percentile facts, quadrant, cost caveats, action + guardrail, notes.
    """
    lines = [
        f"Popularity rank #{item.popularity_rank} of {total_items} by units sold "
        f"({item.quantity_sold:g} sold, percentile {item.popularity_percentile:.0f})",
        f"Unit margin ${item.unit_margin:.2f} at percentile {item.margin_percentile:.0f}; "
        f"total margin ${item.total_margin:.2f} at percentile {item.profit_percentile:.0f}",
        _QUADRANT_NARRATIVE[item.quadrant],
    ]

    # Cost caveats
    if item.cost_source == "ESTIMATE":
        lines.append(
            "No cost record found - food cost estimated at 30% of average price; "
            "treat this recommendation as indicative"
        )
    if item.food_cost_pct is None:
        lines.append("Average price is $0.00 - food cost % cannot be computed")
    elif item.food_cost_pct > settings.target_food_cost_pct:
        lines.append(
            f"Food cost at {item.food_cost_pct:.1f}% is above the "
            f"{settings.target_food_cost_pct:g}% target"
        )
    else:
        lines.append(
            f"Food cost at {item.food_cost_pct:.1f}% is within the "
            f"{settings.target_food_cost_pct:g}% target"
        )

    # Action
    action = item.recommended_action
    if action == "REPRICE" and item.price_change_amount:
        lines.append(
            f"Suggest price increase of ${item.price_change_amount:.2f} "
            f"({item.price_change_pct:.1f}%) to ${item.suggested_price:.2f}"
        )
        lines.append(_GUARDRAIL_NOTES[item.price_guardrail].format(
            target=settings.target_food_cost_pct,
            pct=settings.max_price_increase_pct,
            amt=settings.max_price_increase_amt,
            p85=round_money(category_stats.p85_price) if category_stats else 0.0,
        ))
        if category_stats:
            lines.append(f"Category median price is ${round_money(category_stats.median_price):.2f}")
    elif action == "PROMOTE":
        lines.append("Consider featuring more prominently on menu")
    elif action == "REPOSITION":
        if item.quadrant == "PLOWHORSE":
            lines.append("No price room within guardrails - try pairing or menu placement instead")
        else:
            lines.append("Try featuring on specials or with server recommendations")
    elif action == "REWORK_COST":
        lines.append("Consider reducing portion size or ingredient costs")
    elif action == "REMOVE":
        lines.append("Consider removing or significantly reworking this item")
    elif action == "KEEP":
        lines.append("Keep as-is and re-check next week")

    if item.is_anchor:
        lines.append("Marked as anchor item - kept on the menu and exempt from price increases")

    if item.confidence == "LOW":
        lines.append("Low sales volume - collect more data before acting")

    return tuple(lines)


# =============================================================================
# MAIN SCORING
# =============================================================================

def _reject_negative_inputs(items: Sequence[ItemInput]) -> None:
    bad = [
        i.item_name for i in items
        if i.quantity_sold < 0 or i.net_sales < 0 or i.unit_food_cost < 0
    ]
    if bad:
        raise ValueError(
            f"❌ CRITICAL: {len(bad)} items have negative quantity, sales or cost: {bad[:5]}\n"
            f"Refunds and voids must be filtered before scoring."
        )


def score_items(items: Sequence[ItemInput],
                settings: Union[ScoringSettings, Dict[str, Any], None] = None) -> List[ItemMetrics]:
    """
    Score every item with sales and return them highest estimated impact first.

    Items with zero quantity carry no sales signal and are left out. Negative
    quantities, sales or costs reject the whole batch.
    """
    settings = resolve_settings(settings)
    _reject_negative_inputs(items)

    valid_items = [i for i in items if i.quantity_sold > 0]
    if not valid_items:
        return []

    category_stats = calculate_category_stats(valid_items)
    n = len(valid_items)

    # Base metrics
    avg_prices = [i.net_sales / i.quantity_sold for i in valid_items]
    unit_margins = [p - i.unit_food_cost for p, i in zip(avg_prices, valid_items)]
    total_margins = [m * i.quantity_sold for m, i in zip(unit_margins, valid_items)]

    popularity = percentile_ranks(valid_items, lambda i: i.quantity_sold)
    margin = percentile_ranks(unit_margins, lambda m: m)
    profit = percentile_ranks(total_margins, lambda m: m)
    popularity_rank = (
        pd.Series([i.quantity_sold for i in valid_items])
        .rank(method="min", ascending=False)
        .astype(int)
        .tolist()
    )

    results = []
    for idx, item in enumerate(valid_items):
        avg_price = avg_prices[idx]
        food_cost_pct = item.unit_food_cost / avg_price * 100 if avg_price > 0 else None
        stats = category_stats.get(item.category or UNCATEGORIZED)

        # Classify on the rounded (reported) percentiles
        popularity_pct = round_money(popularity[idx])
        margin_pct = round_money(margin[idx])
        quadrant = determine_quadrant(popularity_pct, margin_pct, settings)
        confidence = determine_confidence(item.quantity_sold, settings)

        food_cost_above_target = (
            food_cost_pct is not None and food_cost_pct > settings.target_food_cost_pct
        )
        suggestion = None
        if (ACTION_TABLE[(quadrant, confidence, item.is_anchor)] == "REPRICE"
                and food_cost_above_target):
            suggestion = suggest_price(avg_price, item.unit_food_cost, stats, settings)

        action = recommend_action(
            quadrant,
            confidence,
            item.is_anchor,
            food_cost_above_target=food_cost_above_target,
            has_price_room=suggestion is not None,
            priced_below_category_median=stats is not None and avg_price < stats.median_price,
        )
        if action != "REPRICE":
            suggestion = None

        metrics = ItemMetrics(
            item_id=item.item_id,
            item_name=item.item_name,
            category=item.category,
            quantity_sold=item.quantity_sold,
            net_sales=item.net_sales,
            unit_food_cost=item.unit_food_cost,
            unit_cost_base=item.unit_cost_base,
            unit_cost_modifiers=item.unit_cost_modifiers,
            cost_source=item.cost_source,
            is_anchor=item.is_anchor,
            avg_price=round_money(avg_price),
            unit_margin=round_money(unit_margins[idx]),
            total_margin=round_money(total_margins[idx]),
            food_cost_pct=round_money(food_cost_pct) if food_cost_pct is not None else None,
            popularity_percentile=popularity_pct,
            margin_percentile=margin_pct,
            profit_percentile=round_money(profit[idx]),
            popularity_rank=popularity_rank[idx],
            quadrant=quadrant,
            recommended_action=action,
            confidence=confidence,
            suggested_price=suggestion.suggested_price if suggestion else None,
            price_change_amount=suggestion.change_amount if suggestion else None,
            price_change_pct=suggestion.change_pct if suggestion else None,
            price_guardrail=suggestion.guardrail if suggestion else None,
            estimated_impact=round_money(estimate_impact(
                action,
                suggestion.change_amount if suggestion else None,
                item.quantity_sold,
                total_margins[idx],
            )),
        )
        results.append(replace(
            metrics,
            explanation=generate_explanation(metrics, n, settings, stats),
        ))

    # Highest impact first; name/id keep ties deterministic
    results.sort(key=lambda m: (-m.estimated_impact, m.item_name, m.item_id))
    return results


# =============================================================================
# SCORING AGGREGATOR
# =============================================================================

def generate_scoring_result(items: Sequence[ItemMetrics], excluded_items: int = 0) -> ScoringResult:
    """Summary statistics and curated highlight lists for a scored week."""
    by_quadrant: Dict[str, List[ItemMetrics]] = {q: [] for q in ("STAR", "PLOWHORSE", "PUZZLE", "DOG")}
    for item in items:
        by_quadrant[item.quadrant].append(item)

    food_cost_pcts = [i.food_cost_pct for i in items if i.food_cost_pct is not None]

    summary = ScoringSummary(
        total_items=len(items),
        stars=len(by_quadrant["STAR"]),
        plowhorses=len(by_quadrant["PLOWHORSE"]),
        puzzles=len(by_quadrant["PUZZLE"]),
        dogs=len(by_quadrant["DOG"]),
        total_revenue=round_money(sum(i.net_sales for i in items)),
        total_margin=round_money(sum(i.total_margin for i in items)),
        avg_food_cost_pct=round_money(float(np.mean(food_cost_pcts))) if food_cost_pcts else 0.0,
        excluded_items=excluded_items,
        estimated_cost_items=sum(1 for i in items if i.cost_source == "ESTIMATE"),
    )

    # Margin leaks: plowhorses with the highest volume
    margin_leaks = sorted(
        by_quadrant["PLOWHORSE"], key=lambda i: (-i.quantity_sold, i.item_name)
    )[:HIGHLIGHT_LIMIT]

    # Easy wins: high-margin puzzles with a usable sales signal
    easy_wins = sorted(
        (i for i in by_quadrant["PUZZLE"] if i.confidence in ("HIGH", "MEDIUM")),
        key=lambda i: (-i.unit_margin, i.item_name),
    )[:HIGHLIGHT_LIMIT]

    watch_items = [i for i in items if i.confidence == "LOW"][:HIGHLIGHT_LIMIT]

    return ScoringResult(
        items=tuple(items),
        summary=summary,
        top_actions=tuple(i for i in items if i.estimated_impact > 0)[:TOP_ACTIONS_LIMIT],
        margin_leaks=tuple(margin_leaks),
        easy_wins=tuple(easy_wins),
        watch_items=tuple(watch_items),
    )


def score_menu(items: Sequence[ItemInput],
               settings: Union[ScoringSettings, Dict[str, Any], None] = None) -> ScoringResult:
    """score_items + generate_scoring_result in one call."""
    scored = score_items(items, settings)
    excluded = sum(1 for i in items if i.quantity_sold == 0)
    return generate_scoring_result(scored, excluded_items=excluded)

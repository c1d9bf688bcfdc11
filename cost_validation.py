"""
Cost Reconciliation Validator
=============================

Cross-checks POS volumes and prices against an external cost export before
the costs are trusted in a weekly report.

Checks:
- Coverage: share of POS items with sales that matched a usable cost record
- Staleness: does the cost period line up with the scoring week?
- Price mismatches: POS average price vs the cost system's revenue / items sold
- Quantity mismatches: POS units vs the cost system's items sold
- Sanity: negative base costs, costs close to or above price, near-zero costs

Low coverage (REVIEW) or any sanity warning requires a human to acknowledge
the report before the run is persisted. Everything else is informational.
"""

from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from cost_resolver import compute_unit_cost, normalize_item_name
from scoring_models import ComputedCost, CostValidationReport, ExternalCostRow, ItemInput


# Thresholds
COVERAGE_GOOD = 0.90
COVERAGE_MIXED = 0.50
STALE_AFTER_DAYS = 3
WEEK_SPAN = pd.Timedelta(days=6)
PRICE_MISMATCH_TOLERANCE = 0.15
QTY_MISMATCH_TOLERANCE = 0.10
HIGH_FOOD_COST_RATIO = 0.80
NEAR_ZERO_COST_RATIO = 0.01
MAX_MISMATCH_WARNINGS = 10


def _avg_price(item: ItemInput) -> float:
    return item.net_sales / item.quantity_sold if item.quantity_sold > 0 else 0.0


def _pos_items_with_sales(pos_items: Sequence[ItemInput]) -> List[ItemInput]:
    return [i for i in pos_items if i.quantity_sold > 0]


# =============================================================================
# COVERAGE
# =============================================================================

def coverage_badge(coverage: float) -> str:
    if coverage >= COVERAGE_GOOD:
        return "GOOD"
    if coverage >= COVERAGE_MIXED:
        return "MIXED"
    return "REVIEW"


def validate_cost_coverage(pos_items: Sequence[ItemInput],
                           cost_lookup: Dict[str, ComputedCost]) -> Tuple[float, str, List[str]]:
    """
    Returns:
        (coverage 0-1, badge, names of POS items without a cost record)
    """
    sold = _pos_items_with_sales(pos_items)
    if not sold:
        return 0.0, "REVIEW", []

    keys = {normalize_item_name(k) for k in cost_lookup}
    unmatched = [i.item_name for i in sold if normalize_item_name(i.item_name) not in keys]
    coverage = (len(sold) - len(unmatched)) / len(sold)
    return coverage, coverage_badge(coverage), unmatched


# =============================================================================
# STALENESS
# =============================================================================

def check_staleness(week_start=None,
                    cost_period_end=None,
                    week_end=None,
                    cost_period_start=None) -> Tuple[str, Optional[int]]:
    """
    Compare the cost period with the scoring week.

    STALE when the cost period ends more than STALE_AFTER_DAYS before the
    week starts, or starts after the week ends. Missing period starts/ends
    default to a 7-day week.

    Returns:
        ("CURRENT" | "STALE" | "UNKNOWN", days the cost period ends before the week)
    """
    if week_start is None or cost_period_end is None:
        return "UNKNOWN", None

    week_start = pd.Timestamp(week_start).normalize()
    cost_end = pd.Timestamp(cost_period_end).normalize()
    week_end = pd.Timestamp(week_end).normalize() if week_end is not None else week_start + WEEK_SPAN
    cost_start = (
        pd.Timestamp(cost_period_start).normalize() if cost_period_start is not None else cost_end - WEEK_SPAN
    )

    gap_days = (week_start - cost_end).days
    if gap_days > STALE_AFTER_DAYS or cost_start > week_end:
        return "STALE", gap_days
    return "CURRENT", gap_days


# =============================================================================
# MISMATCHES
# =============================================================================

def detect_price_mismatches(pos_items: Sequence[ItemInput],
                            cost_lookup: Dict[str, ComputedCost]) -> List[str]:
    """
    Flag items whose POS average price and the cost system's reported price
    differ by more than 15%. Largest differences first, at most 10.
    """
    found = []
    for item in _pos_items_with_sales(pos_items):
        cost = cost_lookup.get(normalize_item_name(item.item_name))
        if cost is None or cost.reported_price is None:
            continue
        pos_price = _avg_price(item)
        if pos_price <= 0:
            continue
        diff = abs(pos_price - cost.reported_price) / pos_price
        if diff > PRICE_MISMATCH_TOLERANCE:
            found.append((diff, item.item_name, pos_price, cost.reported_price))

    found.sort(key=lambda f: (-f[0], f[1]))
    return [
        f"{name}: POS avg price ${pos:.2f} vs cost system ${reported:.2f} ({diff * 100:.0f}% difference)"
        for diff, name, pos, reported in found[:MAX_MISMATCH_WARNINGS]
    ]


def detect_quantity_mismatches(pos_items: Sequence[ItemInput],
                               cost_lookup: Dict[str, ComputedCost]) -> List[str]:
    """Units sold disagreeing by more than 10%, highest-volume items first."""
    warnings = []
    sold = sorted(_pos_items_with_sales(pos_items), key=lambda i: (-i.quantity_sold, i.item_name))
    for item in sold:
        cost = cost_lookup.get(normalize_item_name(item.item_name))
        if cost is None or cost.items_sold == 0:
            continue
        mismatch = abs(item.quantity_sold - cost.items_sold) / max(1.0, item.quantity_sold)
        if mismatch > QTY_MISMATCH_TOLERANCE:
            warnings.append(
                f"{item.item_name}: POS sold {item.quantity_sold:g} vs cost system "
                f"{cost.items_sold} ({mismatch * 100:.0f}% difference)"
            )
    return warnings[:MAX_MISMATCH_WARNINGS]


# =============================================================================
# SANITY
# =============================================================================

def sanity_cost_checks(cost_rows: Sequence[ExternalCostRow],
                       pos_items: Sequence[ItemInput]) -> List[str]:
    """Implausible cost records: negative base, cost near/above price, cost near zero."""
    warnings = []
    prices = {normalize_item_name(i.item_name): _avg_price(i) for i in _pos_items_with_sales(pos_items)}

    negative = [r.item_name for r in cost_rows
                if r.avg_cost_base is not None and r.avg_cost_base < 0]
    if negative:
        warnings.append(
            f"{len(negative)} items have negative base costs and were filtered out: {negative[:5]}"
        )

    for row in cost_rows:
        cost = compute_unit_cost(row)
        price = prices.get(normalize_item_name(row.item_name))
        if cost is None or not price:
            continue
        ratio = cost.unit_cost_total / price
        if ratio >= HIGH_FOOD_COST_RATIO:
            warnings.append(
                f"{row.item_name}: unit cost ${cost.unit_cost_total:.2f} is {ratio * 100:.0f}% "
                f"of price ${price:.2f} - check recipe setup or modifiers"
            )
        elif ratio <= NEAR_ZERO_COST_RATIO:
            warnings.append(
                f"{row.item_name}: unit cost ${cost.unit_cost_total:.2f} is near zero "
                f"against price ${price:.2f} - recipe may be incomplete"
            )
    return warnings


# =============================================================================
# FULL REPORT
# =============================================================================

def validate_cost_data(pos_items: Sequence[ItemInput],
                       cost_rows: Sequence[ExternalCostRow],
                       week_start=None,
                       cost_period_end=None,
                       week_end=None,
                       cost_period_start=None) -> CostValidationReport:
    """Run every reconciliation check and decide whether acknowledgment is required."""
    cost_lookup: Dict[str, ComputedCost] = {}
    for row in cost_rows:
        cost = compute_unit_cost(row)
        if cost is not None:
            cost_lookup[normalize_item_name(cost.item_name)] = cost

    coverage, badge, unmatched = validate_cost_coverage(pos_items, cost_lookup)
    staleness, staleness_days = check_staleness(week_start, cost_period_end, week_end, cost_period_start)
    sanity = sanity_cost_checks(cost_rows, pos_items)

    return CostValidationReport(
        coverage=coverage,
        coverage_badge=badge,
        staleness=staleness,
        staleness_days=staleness_days,
        matched_items=len(_pos_items_with_sales(pos_items)) - len(unmatched),
        total_pos_items=len(_pos_items_with_sales(pos_items)),
        unmatched_items=tuple(unmatched),
        mismatch_warnings=tuple(detect_price_mismatches(pos_items, cost_lookup)),
        quantity_warnings=tuple(detect_quantity_mismatches(pos_items, cost_lookup)),
        sanity_warnings=tuple(sanity),
        requires_acknowledgment=badge == "REVIEW" or bool(sanity),
    )

"""
Cost Resolver
=============

Assigns a unit food cost to every menu item for the week.

Sources are tried in order and the first one holding a record wins:
1. MANUAL      – owner-entered cost for the item
2. MARGINEDGE  – external ingredient-costing export (base + modifier split)
3. prior cost  – most recent previously stored cost, under its stored source
4. ESTIMATE    – 30% of the item's average selling price

A record of 0 is a real cost of 0; the estimate only applies when no source
has a record at all. Every lookup keys on the normalized item name.

External cost ingestion (unit cost preference order):
A) total_cost / items_sold                 when both are positive
B) avg_cost_base + modifier_cost / items_sold
C) avg_cost_base alone
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from pos_loader import COST_FIELD_DEFINITIONS, apply_column_map, normalize_item_name, parse_money
from scoring_models import ComputedCost, ExternalCostRow, ItemInput


ESTIMATED_FOOD_COST_RATIO = 0.30

MANUAL_COST_FIELD_DEFINITIONS = {
    "item_name": COST_FIELD_DEFINITIONS["item_name"],
    "avg_cost_base": COST_FIELD_DEFINITIONS["avg_cost_base"],
}


# =============================================================================
# EXTERNAL COST INGESTION
# =============================================================================

def compute_unit_cost(row: ExternalCostRow) -> Optional[ComputedCost]:
    """Unit cost for one external row, or None when no usable base cost exists."""
    if row.avg_cost_base is None or pd.isna(row.avg_cost_base):
        return None
    if row.avg_cost_base < 0:
        return None

    warnings = []
    base = float(row.avg_cost_base)
    modifiers = None
    has_modifiers = False

    if row.total_cost is not None and row.total_cost > 0 and row.items_sold > 0:
        total = row.total_cost / row.items_sold
        path = "A"
        if total > base:
            modifiers = total - base
            has_modifiers = True
    elif row.modifier_cost is not None and row.modifier_cost > 0 and row.items_sold > 0:
        modifiers = row.modifier_cost / row.items_sold
        total = base + modifiers
        path = "B"
        has_modifiers = True
    else:
        total = base
        path = "C"

    if total < base:
        warnings.append(f"Total cost (${total:.2f}) < base cost (${base:.2f}) - using base")
        total = base

    return ComputedCost(
        item_name=row.item_name,
        unit_cost_base=base,
        unit_cost_modifiers=modifiers,
        unit_cost_total=total,
        has_modifiers=has_modifiers,
        computation_path=path,
        ingestion_warnings=tuple(warnings),
        items_sold=row.items_sold,
        total_revenue=row.total_revenue,
        total_cost=row.total_cost,
        theoretical_cost_pct=row.theoretical_cost_pct,
    )


def _optional(value) -> Optional[float]:
    return None if pd.isna(value) else float(value)


def parse_external_cost_rows(raw: pd.DataFrame,
                             column_map: Optional[Dict[str, str]] = None) -> Tuple[List[ExternalCostRow], int]:
    """
    Map headers and parse currency columns of an external cost export.

    Returns:
        (rows, skipped) where skipped counts rows without an item name
    """
    frame = apply_column_map(raw, column_map, COST_FIELD_DEFINITIONS, label="Cost file")
    frame = frame.copy()

    for col in ("avg_cost_base", "modifier_cost", "total_cost", "total_revenue_cost",
                "theoretical_cost_pct", "items_sold_cost"):
        if col in frame.columns:
            frame[col] = parse_money(frame[col])
        else:
            frame[col] = float("nan")

    rows = []
    skipped = 0
    for record in frame.to_dict("records"):
        name = record.get("item_name")
        if name is None or pd.isna(name) or not str(name).strip():
            skipped += 1
            continue
        category = record.get("category")
        items_sold = record["items_sold_cost"]
        rows.append(ExternalCostRow(
            item_name=str(name).strip(),
            items_sold=0 if pd.isna(items_sold) else int(items_sold),
            avg_cost_base=_optional(record["avg_cost_base"]),
            modifier_cost=_optional(record["modifier_cost"]),
            total_cost=_optional(record["total_cost"]),
            total_revenue=_optional(record["total_revenue_cost"]),
            theoretical_cost_pct=_optional(record["theoretical_cost_pct"]),
            category=None if category is None or pd.isna(category) else str(category).strip(),
        ))
    return rows, skipped


def process_external_costs(rows: Iterable[ExternalCostRow]) -> Tuple[Dict[str, ComputedCost], List[ComputedCost], int]:
    """Compute unit costs; rows without a usable base cost are skipped and counted."""
    lookup: Dict[str, ComputedCost] = {}
    computed = []
    skipped = 0
    for row in rows:
        cost = compute_unit_cost(row)
        if cost is None:
            skipped += 1
            continue
        computed.append(cost)
        lookup[normalize_item_name(cost.item_name)] = cost
    return lookup, computed, skipped


def load_external_costs(raw: pd.DataFrame,
                        column_map: Optional[Dict[str, str]] = None) -> Tuple[Dict[str, ComputedCost], List[ComputedCost], int]:
    """
    Parse an external cost export into a lookup keyed by normalized item name.

    Returns:
        (lookup, computed_costs, skipped_count)
    """
    rows, unnamed = parse_external_cost_rows(raw, column_map)
    lookup, computed, skipped = process_external_costs(rows)
    return lookup, computed, skipped + unnamed


def load_manual_costs(raw: pd.DataFrame, column_map: Optional[Dict[str, str]] = None) -> Dict[str, float]:
    """Owner cost sheet (item name + unit cost) as {item name: unit cost}."""
    frame = apply_column_map(raw, column_map, MANUAL_COST_FIELD_DEFINITIONS, label="Manual cost file")
    frame = frame.assign(avg_cost_base=parse_money(frame["avg_cost_base"]))
    frame = frame.dropna(subset=["item_name", "avg_cost_base"])
    return {str(name).strip(): float(cost) for name, cost in zip(frame["item_name"], frame["avg_cost_base"])}


# =============================================================================
# FALLBACK CHAIN
# =============================================================================

@dataclass(frozen=True)
class ResolvedCost:
    value: float
    source: str
    base: Optional[float] = None
    modifiers: Optional[float] = None


class ManualCostStrategy:
    """Owner-entered costs."""

    def __init__(self, costs: Dict[str, float]):
        self.costs = {normalize_item_name(k): float(v) for k, v in costs.items()}

    def resolve(self, item_name: str, avg_price: float) -> Optional[ResolvedCost]:
        key = normalize_item_name(item_name)
        if key not in self.costs:
            return None
        return ResolvedCost(value=self.costs[key], source="MANUAL")


class ExternalCostStrategy:
    """Costs computed from the external costing export."""

    def __init__(self, lookup: Dict[str, ComputedCost]):
        self.lookup = {normalize_item_name(k): v for k, v in lookup.items()}

    def resolve(self, item_name: str, avg_price: float) -> Optional[ResolvedCost]:
        cost = self.lookup.get(normalize_item_name(item_name))
        if cost is None:
            return None
        return ResolvedCost(
            value=cost.unit_cost_total,
            source="MARGINEDGE",
            base=cost.unit_cost_base,
            modifiers=cost.unit_cost_modifiers,
        )


class PriorCostStrategy:
    """
    Most recently stored cost per item. Values are either a ResolvedCost
    (keeps the source it was stored under) or a bare number (treated as MANUAL).
    """

    def __init__(self, costs: Dict[str, Union[ResolvedCost, float]]):
        self.costs = {}
        for name, value in costs.items():
            if not isinstance(value, ResolvedCost):
                value = ResolvedCost(value=float(value), source="MANUAL")
            self.costs[normalize_item_name(name)] = value

    def resolve(self, item_name: str, avg_price: float) -> Optional[ResolvedCost]:
        return self.costs.get(normalize_item_name(item_name))


class EstimateStrategy:
    """Last resort: a fixed share of the average selling price."""

    def __init__(self, ratio: float = ESTIMATED_FOOD_COST_RATIO):
        self.ratio = ratio

    def resolve(self, item_name: str, avg_price: float) -> Optional[ResolvedCost]:
        return ResolvedCost(value=max(avg_price, 0.0) * self.ratio, source="ESTIMATE")


def build_cost_chain(manual_costs: Optional[Dict[str, float]] = None,
                     external_costs: Optional[Dict[str, ComputedCost]] = None,
                     prior_costs: Optional[Dict[str, Union[ResolvedCost, float]]] = None,
                     estimate_ratio: float = ESTIMATED_FOOD_COST_RATIO) -> list:
    """Ordered strategies for the sources that were supplied, always ending in the estimate."""
    chain = []
    if manual_costs:
        chain.append(ManualCostStrategy(manual_costs))
    if external_costs:
        chain.append(ExternalCostStrategy(external_costs))
    if prior_costs:
        chain.append(PriorCostStrategy(prior_costs))
    chain.append(EstimateStrategy(estimate_ratio))
    return chain


def resolve_item_cost(item_name: str, avg_price: float, chain: Sequence) -> ResolvedCost:
    for strategy in chain:
        resolved = strategy.resolve(item_name, avg_price)
        if resolved is not None:
            return resolved
    # Chains built without an estimate still need an answer
    return EstimateStrategy().resolve(item_name, avg_price)


def resolve_costs(items_df: pd.DataFrame, chain: Sequence) -> List[ItemInput]:
    """
    Attach a resolved cost to every aggregated POS item.

    items_df is the frame produced by pos_loader.aggregate_pos_rows.
    """
    inputs = []
    for row in items_df.to_dict("records"):
        qty = float(row["quantity_sold"])
        sales = float(row["net_sales"])
        avg_price = sales / qty if qty > 0 else 0.0
        cost = resolve_item_cost(row["item_name"], avg_price, chain)
        category = row.get("category")
        inputs.append(ItemInput(
            item_id=str(row["item_id"]),
            item_name=str(row["item_name"]),
            category=category if isinstance(category, str) and category else None,
            quantity_sold=qty,
            net_sales=sales,
            unit_food_cost=cost.value,
            unit_cost_base=cost.base,
            unit_cost_modifiers=cost.modifiers,
            cost_source=cost.source,
            is_anchor=bool(row.get("is_anchor", False)),
        ))
    return inputs

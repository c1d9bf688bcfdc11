"""
Menu Scoring Data Model
=======================

Core data structures shared by the scoring engine, the cost resolver and the
cost reconciliation validator.

Flow:
- ItemInput (one per item per week) + ScoringSettings
- ItemMetrics (derived per item) -> ScoringResult (derived per run)
- ComputedCost / CostValidationReport (only when two cost sources are present)

Everything here is immutable once built. The `to_dict()` helpers render the
camelCase shape consumed by report/CSV collaborators.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Tuple


# =============================================================================
# ENUMERATIONS (string values are relied on by downstream UI and CSV exports)
# =============================================================================

Quadrant = Literal["STAR", "PLOWHORSE", "PUZZLE", "DOG"]
QUADRANTS: Tuple[str, ...] = ("STAR", "PLOWHORSE", "PUZZLE", "DOG")

RecommendedAction = Literal[
    "KEEP",
    "PROMOTE",
    "REPRICE",
    "REPOSITION",
    "REWORK_COST",
    "REMOVE",
    "KEEP_ANCHOR",
]
ACTIONS: Tuple[str, ...] = (
    "KEEP",
    "PROMOTE",
    "REPRICE",
    "REPOSITION",
    "REWORK_COST",
    "REMOVE",
    "KEEP_ANCHOR",
)

Confidence = Literal["HIGH", "MEDIUM", "LOW"]
CONFIDENCE_LEVELS: Tuple[str, ...] = ("HIGH", "MEDIUM", "LOW")

CostSource = Literal["MANUAL", "MARGINEDGE", "ESTIMATE"]
COST_SOURCES: Tuple[str, ...] = ("MANUAL", "MARGINEDGE", "ESTIMATE")

CoverageBadge = Literal["GOOD", "MIXED", "REVIEW"]
Staleness = Literal["CURRENT", "STALE", "UNKNOWN"]

# Which guardrail bound a price suggestion
PriceGuardrail = Literal["TARGET", "PCT_CAP", "ABS_CAP", "CATEGORY_P85"]

# Ordering used by monotonicity checks and sorting (LOW < MEDIUM < HIGH)
CONFIDENCE_ORDER = {"LOW": 0, "MEDIUM": 1, "HIGH": 2}


def round_money(value: float, decimals: int = 2) -> float:
    """Round half away from zero (matches how reports display currency)."""
    factor = 10 ** decimals
    scaled = abs(value) * factor
    rounded = int(scaled + 0.5 + 1e-9) / factor
    return rounded if value >= 0 else -rounded


# =============================================================================
# INPUTS
# =============================================================================

@dataclass(frozen=True)
class ItemInput:
    """
    One menu item for one week, as handed over by the upload collaborator.

    Attributes:
        item_id: Stable identifier (database id or derived slug)
        item_name: Display name as printed on the POS export
        category: Menu section, None when the POS export has no category column
        quantity_sold: Units sold in the week (>= 0)
        net_sales: Net revenue after discounts (>= 0)
        unit_food_cost: Food cost per unit (>= 0)
        unit_cost_base: Base recipe cost before modifiers (external cost data)
        unit_cost_modifiers: Modifier component of the unit cost
        cost_source: Where unit_food_cost came from
        is_anchor: Owner-designated staple, exempt from removal/increase
    """
    item_id: str
    item_name: str
    quantity_sold: float
    net_sales: float
    unit_food_cost: float
    category: Optional[str] = None
    unit_cost_base: Optional[float] = None
    unit_cost_modifiers: Optional[float] = None
    cost_source: CostSource = "ESTIMATE"
    is_anchor: bool = False


@dataclass(frozen=True)
class ScoringSettings:
    """
    Organization/location thresholds, fixed for the duration of a run.

    Percentages are expressed in percent (30 means 30%), matching how owners
    enter them on the settings screen.
    """
    target_food_cost_pct: float = 30.0
    min_qty_threshold: float = 10.0
    popularity_threshold: float = 60.0
    margin_threshold: float = 60.0
    allow_premium_pricing: bool = False
    max_price_increase_pct: float = 8.0
    max_price_increase_amt: float = 2.0

    def __post_init__(self):
        problems = []
        for name in ("popularity_threshold", "margin_threshold"):
            value = getattr(self, name)
            if not 1 <= value <= 99:
                problems.append(f"{name}={value} (must be between 1 and 99)")
        if not 0 < self.target_food_cost_pct < 100:
            problems.append(f"target_food_cost_pct={self.target_food_cost_pct} (must be between 0 and 100)")
        if self.min_qty_threshold < 0:
            problems.append(f"min_qty_threshold={self.min_qty_threshold} (must be >= 0)")
        if self.max_price_increase_pct < 0 or self.max_price_increase_amt < 0:
            problems.append("price increase guardrails must be >= 0")
        if problems:
            raise ValueError(
                "❌ CRITICAL: Invalid scoring settings:\n"
                + "\n".join(f"    • {p}" for p in problems)
            )


# =============================================================================
# DERIVED PER-ITEM METRICS
# =============================================================================

@dataclass(frozen=True)
class ItemMetrics:
    """Fully scored item. Built once per run, never mutated."""
    item_id: str
    item_name: str
    category: Optional[str]

    # Raw inputs
    quantity_sold: float
    net_sales: float
    unit_food_cost: float
    unit_cost_base: Optional[float]
    unit_cost_modifiers: Optional[float]
    cost_source: CostSource
    is_anchor: bool

    # Computed metrics
    avg_price: float
    unit_margin: float
    total_margin: float
    food_cost_pct: Optional[float]

    # Percentile ranks (0-100)
    popularity_percentile: float
    margin_percentile: float
    profit_percentile: float
    popularity_rank: int

    # Classification + recommendation
    quadrant: Quadrant
    recommended_action: RecommendedAction
    confidence: Confidence
    suggested_price: Optional[float] = None
    price_change_amount: Optional[float] = None
    price_change_pct: Optional[float] = None
    price_guardrail: Optional[PriceGuardrail] = None
    explanation: Tuple[str, ...] = ()

    # For impact sorting
    estimated_impact: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "itemId": self.item_id,
            "itemName": self.item_name,
            "category": self.category,
            "quantitySold": self.quantity_sold,
            "netSales": self.net_sales,
            "unitFoodCost": self.unit_food_cost,
            "unitCostBase": self.unit_cost_base,
            "unitCostModifiers": self.unit_cost_modifiers,
            "costSource": self.cost_source,
            "isAnchor": self.is_anchor,
            "avgPrice": self.avg_price,
            "unitMargin": self.unit_margin,
            "totalMargin": self.total_margin,
            "foodCostPct": self.food_cost_pct,
            "popularityPercentile": self.popularity_percentile,
            "marginPercentile": self.margin_percentile,
            "profitPercentile": self.profit_percentile,
            "popularityRank": self.popularity_rank,
            "quadrant": self.quadrant,
            "recommendedAction": self.recommended_action,
            "suggestedPrice": self.suggested_price,
            "priceChangeAmount": self.price_change_amount,
            "priceChangePct": self.price_change_pct,
            "priceGuardrail": self.price_guardrail,
            "confidence": self.confidence,
            "explanation": list(self.explanation),
            "estimatedImpact": self.estimated_impact,
        }


@dataclass(frozen=True)
class CategoryStats:
    """Per-category price/margin statistics used by the pricing guardrails."""
    category: str
    count: int
    median_price: float
    median_margin: float
    p85_price: float
    avg_food_cost_pct: float


# =============================================================================
# RUN-LEVEL RESULT
# =============================================================================

@dataclass(frozen=True)
class ScoringSummary:
    total_items: int = 0
    stars: int = 0
    plowhorses: int = 0
    puzzles: int = 0
    dogs: int = 0
    total_revenue: float = 0.0
    total_margin: float = 0.0
    avg_food_cost_pct: float = 0.0
    excluded_items: int = 0
    estimated_cost_items: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalItems": self.total_items,
            "stars": self.stars,
            "plowhorses": self.plowhorses,
            "puzzles": self.puzzles,
            "dogs": self.dogs,
            "totalRevenue": self.total_revenue,
            "totalMargin": self.total_margin,
            "avgFoodCostPct": self.avg_food_cost_pct,
            "excludedItems": self.excluded_items,
            "estimatedCostItems": self.estimated_cost_items,
        }


@dataclass(frozen=True)
class ScoringResult:
    """
    Output of one scoring run.

    Attributes:
        items: Every scored item, highest estimated impact first
        summary: Quadrant counts and totals
        top_actions: Up to 10 items with a positive estimated impact
        margin_leaks: Highest-volume Plowhorses (first = biggest margin leak)
        easy_wins: Highest-margin Puzzles with usable confidence (first = easiest win)
        watch_items: Low-confidence items to re-check next week
    """
    items: Tuple[ItemMetrics, ...] = ()
    summary: ScoringSummary = field(default_factory=ScoringSummary)
    top_actions: Tuple[ItemMetrics, ...] = ()
    margin_leaks: Tuple[ItemMetrics, ...] = ()
    easy_wins: Tuple[ItemMetrics, ...] = ()
    watch_items: Tuple[ItemMetrics, ...] = ()

    @property
    def biggest_margin_leak(self) -> Optional[ItemMetrics]:
        return self.margin_leaks[0] if self.margin_leaks else None

    @property
    def easiest_win(self) -> Optional[ItemMetrics]:
        return self.easy_wins[0] if self.easy_wins else None

    def to_dict(self) -> dict[str, Any]:
        ids = lambda subset: [m.item_id for m in subset]  # noqa: E731
        return {
            "items": [m.to_dict() for m in self.items],
            "summary": self.summary.to_dict(),
            "topActions": ids(self.top_actions),
            "marginLeaks": ids(self.margin_leaks),
            "easyWins": ids(self.easy_wins),
            "watchItems": ids(self.watch_items),
        }


# =============================================================================
# EXTERNAL COST DATA + RECONCILIATION
# =============================================================================

@dataclass(frozen=True)
class ExternalCostRow:
    """One parsed row from the external ingredient-costing export."""
    item_name: str
    items_sold: int = 0
    avg_cost_base: Optional[float] = None
    modifier_cost: Optional[float] = None
    total_cost: Optional[float] = None
    total_revenue: Optional[float] = None
    theoretical_cost_pct: Optional[float] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class ComputedCost:
    """
    Unit cost derived from an ExternalCostRow.

    computation_path records which rule produced unit_cost_total:
    "A" total_cost / items_sold, "B" base + modifier_cost / items_sold,
    "C" base only.
    """
    item_name: str
    unit_cost_base: float
    unit_cost_modifiers: Optional[float]
    unit_cost_total: float
    has_modifiers: bool
    computation_path: Literal["A", "B", "C"]
    ingestion_warnings: Tuple[str, ...] = ()
    items_sold: int = 0
    total_revenue: Optional[float] = None
    total_cost: Optional[float] = None
    theoretical_cost_pct: Optional[float] = None

    @property
    def reported_price(self) -> Optional[float]:
        """Average selling price implied by the cost system's own revenue figure."""
        if self.total_revenue is None or self.items_sold <= 0:
            return None
        return self.total_revenue / self.items_sold


@dataclass(frozen=True)
class CostValidationReport:
    """
    Reconciliation of POS volumes/prices against the external cost source.

    requires_acknowledgment is True when coverage is REVIEW-grade or any
    sanity warning fired; the caller must have a human acknowledge before the
    run is persisted.
    """
    coverage: float
    coverage_badge: CoverageBadge
    staleness: Staleness
    staleness_days: Optional[int] = None
    matched_items: int = 0
    total_pos_items: int = 0
    unmatched_items: Tuple[str, ...] = ()
    mismatch_warnings: Tuple[str, ...] = ()
    quantity_warnings: Tuple[str, ...] = ()
    sanity_warnings: Tuple[str, ...] = ()
    requires_acknowledgment: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "coverage": self.coverage,
            "coverageBadge": self.coverage_badge,
            "staleness": self.staleness,
            "stalenessDays": self.staleness_days,
            "matchedItems": self.matched_items,
            "totalPosItems": self.total_pos_items,
            "unmatchedItems": list(self.unmatched_items),
            "mismatchWarnings": list(self.mismatch_warnings),
            "quantityWarnings": list(self.quantity_warnings),
            "sanityWarnings": list(self.sanity_warnings),
            "requiresAcknowledgment": self.requires_acknowledgment,
        }

"""
Weekly Scoring Pipeline
=======================

Chains one week's run end to end:

    POS export -> aggregate per item -> resolve costs -> reconcile costs
    (when an external cost export is supplied) -> score -> export

The scoring engine never prints; the console report lives here. Blocking
reconciliation issues do not stop the scoring: the run comes back BLOCKED
with the result attached so the caller can show why, and only an explicit
acknowledge_review=True marks it COMPLETED.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Union

import numpy as np
import pandas as pd

from cost_resolver import (
    ResolvedCost,
    build_cost_chain,
    parse_external_cost_rows,
    process_external_costs,
    resolve_costs,
)
from cost_validation import validate_cost_data
from menu_engineering import CHANNEL_PRESETS, generate_scoring_result, resolve_settings, score_items
from pos_loader import aggregate_pos_rows
from scoring_models import CostValidationReport, ItemInput, ScoringResult, ScoringSettings


RunStatus = Literal["COMPLETED", "BLOCKED"]

CSV_COLUMNS = [
    "Rank",
    "Item Name",
    "Category",
    "Quadrant",
    "Action",
    "Confidence",
    "Qty Sold",
    "Net Sales",
    "Avg Price",
    "Unit Cost",
    "Unit Margin",
    "Total Margin",
    "Food Cost %",
    "Suggested Price",
    "Price Change",
]


@dataclass
class WeeklyRun:
    """
    Everything produced by one weekly run.

    Attributes:
        status: COMPLETED, or BLOCKED while cost issues await acknowledgment
        result: Scoring result (always computed, even when blocked)
        validation: Cost reconciliation report, None without an external cost export
        items: Scoring inputs after aggregation and cost resolution
        settings: Settings the week was scored with
        load_stats: Row counts from the POS loader
        ingestion_warnings: Notes from parsing the external cost export
        blocked_reasons: Why acknowledgment is needed (empty when not blocked)
    """
    status: RunStatus
    result: ScoringResult
    validation: Optional[CostValidationReport]
    items: List[ItemInput]
    settings: ScoringSettings
    load_stats: Dict[str, int] = field(default_factory=dict)
    ingestion_warnings: List[str] = field(default_factory=list)
    blocked_reasons: List[str] = field(default_factory=list)
    week_start: Optional[str] = None
    week_end: Optional[str] = None
    channel: Optional[str] = None


# =============================================================================
# RUN
# =============================================================================

def run_weekly_scoring(pos_raw: pd.DataFrame,
                       settings: Union[ScoringSettings, Dict[str, Any], None] = None,
                       pos_column_map: Optional[Dict[str, str]] = None,
                       anchor_items: Optional[Iterable[str]] = None,
                       manual_costs: Optional[Dict[str, float]] = None,
                       cost_raw: Optional[pd.DataFrame] = None,
                       cost_column_map: Optional[Dict[str, str]] = None,
                       prior_costs: Optional[Dict[str, Union[ResolvedCost, float]]] = None,
                       week_start=None,
                       week_end=None,
                       cost_period_start=None,
                       cost_period_end=None,
                       acknowledge_review: bool = False,
                       channel: Optional[str] = None,
                       verbose: bool = True) -> WeeklyRun:
    """
    Score one week of POS data.

    Args:
        pos_raw: Raw POS product-mix rows (any supported header layout)
        settings: ScoringSettings, a dict of overrides, or None for defaults
        pos_column_map / cost_column_map: {source header: canonical field};
            suggested from the headers when omitted
        anchor_items: Item names the owner never wants removed or repriced
        manual_costs: Owner-entered unit costs by item name
        cost_raw: External cost export; enables cost reconciliation
        prior_costs: Previously stored costs by item name
        week_start / week_end / cost_period_start / cost_period_end: Dates for
            the staleness check (the cost period must line up with the week)
        acknowledge_review: Human sign-off on blocking cost issues
        channel: Channel preset key, used for the focus line only
        verbose: Print the console report
    """
    settings = resolve_settings(settings)

    items_df, load_stats = aggregate_pos_rows(pos_raw, pos_column_map, anchor_items)

    ingestion_warnings: List[str] = []
    cost_rows = None
    external_lookup = None
    if cost_raw is not None:
        cost_rows, unnamed = parse_external_cost_rows(cost_raw, cost_column_map)
        external_lookup, computed, skipped = process_external_costs(cost_rows)
        for cost in computed:
            ingestion_warnings.extend(f"{cost.item_name}: {w}" for w in cost.ingestion_warnings)
        if unnamed + skipped:
            ingestion_warnings.append(
                f"Skipped {unnamed + skipped} cost rows without an item name or usable base cost"
            )

    chain = build_cost_chain(manual_costs, external_lookup, prior_costs)
    items = resolve_costs(items_df, chain)

    validation = None
    if cost_rows is not None:
        validation = validate_cost_data(
            items, cost_rows, week_start, cost_period_end, week_end, cost_period_start
        )

    scored = score_items(items, settings)
    result = generate_scoring_result(
        scored, excluded_items=sum(1 for i in items if i.quantity_sold == 0)
    )

    blocked_reasons = []
    if validation is not None and validation.requires_acknowledgment:
        if validation.coverage_badge == "REVIEW":
            blocked_reasons.append(
                f"Cost coverage {validation.coverage * 100:.0f}% is below the review line"
            )
        blocked_reasons.extend(validation.sanity_warnings)

    status: RunStatus = "BLOCKED" if blocked_reasons and not acknowledge_review else "COMPLETED"

    run = WeeklyRun(
        status=status,
        result=result,
        validation=validation,
        items=items,
        settings=settings,
        load_stats=load_stats,
        ingestion_warnings=ingestion_warnings,
        blocked_reasons=blocked_reasons,
        week_start=str(pd.Timestamp(week_start).date()) if week_start is not None else None,
        week_end=str(pd.Timestamp(week_end).date()) if week_end is not None else None,
        channel=channel,
    )
    if verbose:
        print_run_report(run)
    return run


# =============================================================================
# HEADLINES
# =============================================================================

def generate_focus_line(result: ScoringResult, channel: Optional[str] = None) -> str:
    """One-sentence focus for the week, phrased for the location's channel."""
    summary = result.summary
    if result.biggest_margin_leak is not None:
        action = f'Address margin on "{result.biggest_margin_leak.item_name}"'
    elif summary.plowhorses > summary.stars:
        action = f"Reprice {summary.plowhorses} high-volume items"
    elif summary.puzzles > 0 and result.easy_wins:
        action = f"Reposition {summary.puzzles} high-margin items"
    elif summary.dogs > summary.total_items * 0.3:
        action = f"Simplify menu by reviewing {summary.dogs} underperformers"
    else:
        action = f"Maintain {summary.stars} star items"

    preset = CHANNEL_PRESETS.get(str(channel).upper()) if channel else None
    template = preset["focus_line"] if preset else "This week's focus: {action} to improve menu performance."
    return template.format(action=action)


def estimated_upside_range(result: ScoringResult) -> Optional[str]:
    """Conservative weekly upside (50-100% of estimated impact) from confident actions."""
    total = sum(
        i.estimated_impact for i in result.items
        if i.recommended_action != "KEEP" and i.estimated_impact > 0 and i.confidence != "LOW"
    )
    low, high = round(total * 0.5), round(total)
    if low < 50:
        return None
    return f"${low}-${high}/week"


def print_run_report(run: WeeklyRun) -> None:
    result = run.result
    summary = result.summary

    print("\n" + "=" * 60)
    print("WEEKLY MENU SCORING")
    print("=" * 60)
    print(f"ℹ️  Read {run.load_stats.get('rows_read', 0)} POS rows -> {summary.total_items} scored items"
          f" ({summary.excluded_items} with zero sales excluded)")
    if summary.estimated_cost_items:
        print(f"⚠️  WARNING: {summary.estimated_cost_items} items have no cost record "
              f"(costs estimated at 30% of price)")
    for warning in run.ingestion_warnings:
        print(f"⚠️  WARNING: {warning}")

    if run.validation is not None:
        v = run.validation
        print(f"\n📊 COST RECONCILIATION: coverage {v.coverage * 100:.0f}% ({v.coverage_badge}), "
              f"staleness {v.staleness}")
        for warning in list(v.mismatch_warnings) + list(v.quantity_warnings):
            print(f"  • {warning}")

    if run.status == "BLOCKED":
        print("\n❌ REVIEW REQUIRED - acknowledge these issues before saving the report:\n")
        for reason in run.blocked_reasons:
            print(f"  • {reason}")

    print(f"\n  Stars: {summary.stars}  Plowhorses: {summary.plowhorses}  "
          f"Puzzles: {summary.puzzles}  Dogs: {summary.dogs}")
    print(f"  {generate_focus_line(result, run.channel)}")
    upside = estimated_upside_range(result)
    if upside:
        print(f"  Estimated upside: {upside}")

    for rank, item in enumerate(result.top_actions[:5], start=1):
        print(f"  {rank}. {item.item_name}: {item.recommended_action} "
              f"(impact ${item.estimated_impact:,.2f}, {item.confidence})")

    if run.status == "COMPLETED":
        print("\n✅ Run completed")
    print("=" * 60 + "\n")


# =============================================================================
# EXPORTS
# =============================================================================

def scoring_result_to_frame(result: ScoringResult) -> pd.DataFrame:
    """Report table in the downloadable CSV layout (one row per item, impact order)."""
    rows = []
    for rank, m in enumerate(result.items, start=1):
        rows.append({
            "Rank": rank,
            "Item Name": m.item_name,
            "Category": m.category or "",
            "Quadrant": m.quadrant,
            "Action": m.recommended_action,
            "Confidence": m.confidence,
            "Qty Sold": m.quantity_sold,
            "Net Sales": f"${m.net_sales:.2f}",
            "Avg Price": f"${m.avg_price:.2f}",
            "Unit Cost": f"${m.unit_food_cost:.2f}",
            "Unit Margin": f"${m.unit_margin:.2f}",
            "Total Margin": f"${m.total_margin:.2f}",
            "Food Cost %": f"{m.food_cost_pct:.1f}%" if m.food_cost_pct is not None else "",
            "Suggested Price": f"${m.suggested_price:.2f}" if m.suggested_price else "",
            "Price Change": (
                f"+${m.price_change_amount:.2f} ({m.price_change_pct:.1f}%)"
                if m.price_change_amount else ""
            ),
        })
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def scoring_metrics_frame(result: ScoringResult) -> pd.DataFrame:
    """Numeric per-item metrics (one column per ItemMetrics field)."""
    records = []
    for m in result.items:
        record = m.to_dict()
        record["explanation"] = " | ".join(m.explanation)
        records.append(record)
    return pd.DataFrame(records)


def export_results_to_csv(result: ScoringResult, path: str) -> None:
    scoring_result_to_frame(result).to_csv(path, index=False)


def export_results_to_excel(run: WeeklyRun, path: str) -> None:
    """
    Multi-sheet workbook: report table, full metrics, summary and (when run)
    the cost reconciliation.
    """
    with pd.ExcelWriter(path) as writer:
        scoring_result_to_frame(run.result).to_excel(writer, sheet_name="Report", index=False)

        metrics_df = scoring_metrics_frame(run.result)
        if not metrics_df.empty:
            metrics_df.to_excel(writer, sheet_name="Item_Metrics", index=False)

        summary_df = pd.DataFrame(
            list(run.result.summary.to_dict().items()), columns=["metric", "value"]
        )
        summary_df.to_excel(writer, sheet_name="Summary", index=False)

        if run.validation is not None:
            v = run.validation
            validation_df = pd.DataFrame(
                [(k, val) for k, val in v.to_dict().items() if not isinstance(val, list)],
                columns=["check", "value"],
            )
            validation_df.to_excel(writer, sheet_name="Cost_Validation", index=False)

            warnings = (
                [("mismatch", w) for w in v.mismatch_warnings]
                + [("quantity", w) for w in v.quantity_warnings]
                + [("sanity", w) for w in v.sanity_warnings]
                + [("unmatched", name) for name in v.unmatched_items]
            )
            if warnings:
                pd.DataFrame(warnings, columns=["type", "detail"]).to_excel(
                    writer, sheet_name="Cost_Warnings", index=False
                )


def _to_py(o):
    """Recursive conversion of numpy/pandas scalars to JSON-native types."""
    if isinstance(o, dict):
        return {k: _to_py(v) for k, v in o.items()}
    if isinstance(o, (list, tuple)):
        return [_to_py(v) for v in o]
    if isinstance(o, np.ndarray):
        return _to_py(o.tolist())
    if isinstance(o, np.generic):
        return o.item()
    if isinstance(o, pd.Timestamp):
        return str(o)
    return o


def run_to_dict(run: WeeklyRun) -> Dict[str, Any]:
    return _to_py({
        "status": run.status,
        "weekStart": run.week_start,
        "weekEnd": run.week_end,
        "focusLine": generate_focus_line(run.result, run.channel),
        "estimatedUpside": estimated_upside_range(run.result),
        "blockedReasons": run.blocked_reasons,
        "loadStats": run.load_stats,
        "ingestionWarnings": run.ingestion_warnings,
        "result": run.result.to_dict(),
        "costValidation": run.validation.to_dict() if run.validation is not None else None,
    })


def export_results_to_json(run: WeeklyRun, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(run_to_dict(run), f, indent=2)


def save_run_outputs(run: WeeklyRun, output_dir: str) -> Dict[str, str]:
    """Write CSV, Excel and JSON outputs for a run; returns {kind: path}."""
    os.makedirs(output_dir, exist_ok=True)
    stem = f"menu-scoring-{run.week_start}" if run.week_start else "menu-scoring"
    paths = {
        "csv": os.path.join(output_dir, f"{stem}.csv"),
        "excel": os.path.join(output_dir, f"{stem}.xlsx"),
        "json": os.path.join(output_dir, f"{stem}.json"),
    }
    export_results_to_csv(run.result, paths["csv"])
    export_results_to_excel(run, paths["excel"])
    export_results_to_json(run, paths["json"])
    return paths

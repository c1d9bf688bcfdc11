"""
Weekly Scoring Runner
=====================

Score one week of POS data from the command line and save the outputs
(report CSV, multi-sheet Excel workbook, JSON).

Examples:
    python run_weekly.py data/pos_week.csv --costs data/marginedge.csv \\
        --week-start 2026-01-05 --cost-period-end 2026-01-04 --channel FULL_SERVICE

    python run_weekly.py --sample --output output_sample
"""

import os

import menu_engineering as engine
from cost_resolver import load_manual_costs
from generate_sample_week import SampleWeekGenerator
from pos_loader import read_table
from weekly_pipeline import run_weekly_scoring, save_run_outputs


CONFIG = {
    "channel": "BAR_KITCHEN",
    "output_dir": "output_weekly",
    "cost_source": "external",   # "external" (ingredient-costing export) or "manual"
    "anchor_items": [],
    "settings_overrides": {},
}


def build_config(args) -> dict:
    config = CONFIG.copy()
    config["channel"] = args.channel or config["channel"]
    config["output_dir"] = args.output or config["output_dir"]
    config["cost_source"] = args.cost_source or config["cost_source"]
    config["anchor_items"] = list(args.anchor or [])

    overrides = {}
    if args.target_food_cost is not None:
        overrides["target_food_cost_pct"] = args.target_food_cost
    if args.min_qty is not None:
        overrides["min_qty_threshold"] = args.min_qty
    if args.allow_premium:
        overrides["allow_premium_pricing"] = True
    config["settings_overrides"] = overrides
    return config


def main(argv=None):
    """Run the weekly scoring on a POS export (or a generated sample week)."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Score a week of menu sales: quadrants, actions and price suggestions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("pos", nargs="?", help="Path to POS product mix export (CSV/Excel)")
    parser.add_argument("--costs", help="Path to cost file (CSV/Excel)")
    parser.add_argument("--cost-source", choices=["external", "manual"],
                        help="How to read --costs: ingredient-costing export or owner cost sheet")
    parser.add_argument("--week-start", help="Week start date (YYYY-MM-DD)")
    parser.add_argument("--week-end", help="Week end date (YYYY-MM-DD)")
    parser.add_argument("--cost-period-start", help="First day covered by the cost export (YYYY-MM-DD)")
    parser.add_argument("--cost-period-end", help="Last day covered by the cost export (YYYY-MM-DD)")
    parser.add_argument("--channel", choices=sorted(engine.CHANNEL_PRESETS), help="Channel preset")
    parser.add_argument("--target-food-cost", type=float, help="Target food cost %% (overrides preset)")
    parser.add_argument("--min-qty", type=float, help="Minimum weekly units for MEDIUM confidence")
    parser.add_argument("--allow-premium", action="store_true",
                        help="Allow price suggestions above the category 85th percentile")
    parser.add_argument("--anchor", action="append", help="Anchor item name (repeatable)")
    parser.add_argument("--acknowledge-review", action="store_true",
                        help="Acknowledge blocking cost issues and complete the run")
    parser.add_argument("--output", "-o", help="Output directory")
    parser.add_argument("--sample", action="store_true", help="Run on a generated sample week")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for --sample")

    args = parser.parse_args(argv)
    config = build_config(args)

    if args.sample:
        week = SampleWeekGenerator(seed=args.seed).generate_week()
        pos_raw, cost_raw, manual_costs = week["pos_df"], week["cost_df"], None
        print(f"ℹ️  Generated sample week: {len(week['menu_df'])} items (seed {args.seed})")
    else:
        missing = [p for p in (args.pos, args.costs) if p and not os.path.exists(p)]
        if not args.pos:
            parser.error("a POS file is required unless --sample is given")
        if missing:
            raise FileNotFoundError(
                "Input files are missing: " + ", ".join(missing) +
                ".\nPlease check the paths and retry."
            )
        pos_raw = read_table(args.pos)
        cost_raw, manual_costs = None, None
        if args.costs:
            if config["cost_source"] == "manual":
                manual_costs = load_manual_costs(read_table(args.costs))
            else:
                cost_raw = read_table(args.costs)

    settings = engine.settings_from_preset(config["channel"], **config["settings_overrides"])

    run = run_weekly_scoring(
        pos_raw,
        settings=settings,
        anchor_items=config["anchor_items"],
        manual_costs=manual_costs,
        cost_raw=cost_raw,
        week_start=args.week_start,
        week_end=args.week_end,
        cost_period_start=args.cost_period_start,
        cost_period_end=args.cost_period_end,
        acknowledge_review=args.acknowledge_review,
        channel=config["channel"],
    )

    paths = save_run_outputs(run, config["output_dir"])
    print(f"Wrote weekly scoring outputs to '{config['output_dir']}/'")
    for kind, path in paths.items():
        print(f"  - {kind}: {path}")

    if run.status == "BLOCKED":
        print("\n⚠️  Run is BLOCKED: re-run with --acknowledge-review once the issues above are checked")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

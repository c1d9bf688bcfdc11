"""
Synthetic Week Generator
========================

Generates one week of realistic menu data with configurable:
- Menu size (small/medium/large)
- Sales volume (low/medium/high)
- POS export quirks (currency strings, split rows, refund rows, zero sellers)
- External cost export coverage and drift (price / quantity disagreements)

Use for:
- Automated testing
- Demo runs of run_weekly.py (--sample)
- Stress testing the cost reconciliation checks
"""

from pathlib import Path
from typing import Literal, Optional

import numpy as np
import pandas as pd


class SampleWeekGenerator:
    """Generate a seeded week of POS and cost exports"""

    CATEGORIES = ["Starters", "Mains", "Desserts", "Sides", "Drinks"]

    ITEM_NAMES = {
        "Starters": [
            "Caesar Salad", "Soup of the Day", "Garlic Bread", "Bruschetta",
            "Chicken Wings", "Calamari", "Nachos", "Hummus Plate",
        ],
        "Mains": [
            "Classic Burger", "Chicken Sandwich", "Veggie Burger", "Fish Tacos",
            "Margherita Pizza", "Steak Frites", "Grilled Salmon", "Pasta Carbonara",
            "Chicken Curry", "Mac and Cheese",
        ],
        "Desserts": [
            "Chocolate Cake", "Cheesecake", "Ice Cream", "Apple Pie", "Brownie",
        ],
        "Sides": [
            "French Fries", "Sweet Potato Fries", "Onion Rings", "Side Salad", "Coleslaw",
        ],
        "Drinks": [
            "Draft Lager", "IPA Pint", "House Red", "Lemonade", "Iced Tea", "Cold Brew",
        ],
    }

    # Average selling price range by category (min, max)
    PRICE_RANGES = {
        "Starters": (7.0, 13.0),
        "Mains": (14.0, 28.0),
        "Desserts": (6.0, 10.0),
        "Sides": (4.0, 7.0),
        "Drinks": (4.0, 9.0),
    }

    # Food cost as a share of price
    FOOD_COST_RANGES = {
        "Starters": (0.22, 0.38),
        "Mains": (0.26, 0.42),
        "Desserts": (0.18, 0.32),
        "Sides": (0.15, 0.30),
        "Drinks": (0.15, 0.28),
    }

    # Weekly units sold (min, max)
    VOLUME_RANGES = {
        "low": (0, 25),
        "medium": (3, 90),
        "high": (10, 250),
    }

    MENU_SIZES = {"small": 10, "medium": 25, "large": 40}

    def __init__(self, seed: int = 42):
        """Initialize with random seed for reproducibility"""
        self.rng = np.random.default_rng(seed)

    def generate_menu(self,
                      size: Literal["small", "medium", "large"] = "medium",
                      volume: Literal["low", "medium", "high"] = "medium",
                      zero_sale_items: int = 1) -> pd.DataFrame:
        """
        Generate the week's true per-item figures.

        Returns:
            DataFrame with columns: item_name, category, price, unit_cost,
            quantity_sold, net_sales
        """
        pool = [(cat, name) for cat in self.CATEGORIES for name in self.ITEM_NAMES[cat]]
        count = min(self.MENU_SIZES[size], len(pool))
        picked = sorted(self.rng.choice(len(pool), size=count, replace=False))

        qty_min, qty_max = self.VOLUME_RANGES[volume]
        rows = []
        for idx in picked:
            cat, name = pool[idx]
            price = round(float(self.rng.uniform(*self.PRICE_RANGES[cat])), 2)
            cost = round(price * float(self.rng.uniform(*self.FOOD_COST_RANGES[cat])), 2)
            qty = int(self.rng.integers(qty_min, qty_max + 1))
            rows.append({
                "item_name": name,
                "category": cat,
                "price": price,
                "unit_cost": cost,
                "quantity_sold": qty,
            })

        menu_df = pd.DataFrame(rows)
        if zero_sale_items:
            zero_idx = self.rng.choice(len(menu_df), size=min(zero_sale_items, len(menu_df)), replace=False)
            menu_df.loc[zero_idx, "quantity_sold"] = 0
        menu_df["net_sales"] = (menu_df["price"] * menu_df["quantity_sold"]).round(2)
        return menu_df

    def generate_pos_export(self, menu_df: pd.DataFrame, refund_rows: int = 2) -> pd.DataFrame:
        """
        Toast-style product mix export: currency strings, items split across
        several rows, and refund rows with negative quantity.
        """
        rows = []
        for item in menu_df.itertuples(index=False):
            # Split the week's volume across 1-3 rows (e.g. per daypart)
            parts = int(self.rng.integers(1, 4)) if item.quantity_sold >= 3 else 1
            cuts = sorted(self.rng.choice(np.arange(1, item.quantity_sold), size=parts - 1, replace=False)) \
                if parts > 1 else []
            bounds = [0, *cuts, item.quantity_sold]
            for lo, hi in zip(bounds[:-1], bounds[1:]):
                qty = int(hi - lo)
                rows.append({
                    "Menu Item": item.item_name,
                    "Menu Group": item.category,
                    "Qty": qty,
                    "Net Amount": f"${qty * item.price:,.2f}",
                })

        sellers = menu_df[menu_df["quantity_sold"] > 0]
        for _ in range(min(refund_rows, len(sellers))):
            item = sellers.iloc[int(self.rng.integers(0, len(sellers)))]
            rows.append({
                "Menu Item": item["item_name"],
                "Menu Group": item["category"],
                "Qty": -1,
                "Net Amount": f"(${item['price']:.2f})",
            })

        return pd.DataFrame(rows)

    def generate_cost_export(self,
                             menu_df: pd.DataFrame,
                             coverage: float = 0.9,
                             price_drift_items: int = 0,
                             qty_drift_items: int = 0) -> pd.DataFrame:
        """
        Ingredient-costing export covering roughly `coverage` of the items.

        Drifted items report revenue 30% above the POS figure (price drift) or
        items sold 25% off the POS count (quantity drift).
        """
        sellers = menu_df[menu_df["quantity_sold"] > 0].reset_index(drop=True)
        covered = int(round(coverage * len(sellers)))
        keep = sorted(self.rng.choice(len(sellers), size=covered, replace=False))
        costed = sellers.loc[keep].reset_index(drop=True)

        rows = []
        for pos, item in enumerate(costed.itertuples(index=False)):
            items_sold = int(item.quantity_sold)
            revenue = item.net_sales
            if pos < price_drift_items:
                revenue = round(revenue * 1.3, 2)
            elif pos < price_drift_items + qty_drift_items:
                items_sold = int(round(items_sold * 1.25)) + 1

            modifier_share = float(self.rng.uniform(0.0, 0.15))
            base = round(item.unit_cost * (1 - modifier_share), 2)
            total_cost = round(item.unit_cost * items_sold, 2)
            rows.append({
                "Menu Item": item.item_name,
                "Category": item.category,
                "Items Sold": items_sold,
                "Average Cost": f"${base:.2f}",
                "Modifier Cost": f"${(item.unit_cost - base) * items_sold:.2f}",
                "Total Cost": f"${total_cost:,.2f}",
                "Total Revenue": f"${revenue:,.2f}",
                "Theoretical Cost %": round(item.unit_cost / item.price * 100, 1),
            })

        return pd.DataFrame(rows)

    def generate_week(self,
                      size: Literal["small", "medium", "large"] = "medium",
                      volume: Literal["low", "medium", "high"] = "medium",
                      coverage: float = 0.9,
                      refund_rows: int = 2,
                      price_drift_items: int = 0,
                      qty_drift_items: int = 0,
                      output_dir: Optional[str] = None) -> dict:
        """
        Generate a complete week and optionally save the exports as CSV.

        Returns:
            Dictionary with menu_df (ground truth), pos_df, cost_df and,
            when saved, pos_path / cost_path
        """
        menu_df = self.generate_menu(size=size, volume=volume)
        pos_df = self.generate_pos_export(menu_df, refund_rows=refund_rows)
        cost_df = self.generate_cost_export(
            menu_df,
            coverage=coverage,
            price_drift_items=price_drift_items,
            qty_drift_items=qty_drift_items,
        )

        week = {"menu_df": menu_df, "pos_df": pos_df, "cost_df": cost_df}
        if output_dir is not None:
            out = Path(output_dir)
            out.mkdir(parents=True, exist_ok=True)
            week["pos_path"] = str(out / f"pos_{size}_{volume}.csv")
            week["cost_path"] = str(out / f"costs_{size}_{volume}.csv")
            pos_df.to_csv(week["pos_path"], index=False)
            cost_df.to_csv(week["cost_path"], index=False)
        return week


# =============================================================================
# CLI INTERFACE
# =============================================================================

def main():
    """Generate a sample week via command line"""
    import argparse

    parser = argparse.ArgumentParser(description="Generate a synthetic week of POS and cost exports")
    parser.add_argument("--output", "-o", default="data/sample_week", help="Output directory")
    parser.add_argument("--menu-size", choices=["small", "medium", "large"], default="medium")
    parser.add_argument("--sales-volume", choices=["low", "medium", "high"], default="medium")
    parser.add_argument("--coverage", type=float, default=0.9, help="Share of items in the cost export")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")

    args = parser.parse_args()

    generator = SampleWeekGenerator(seed=args.seed)
    week = generator.generate_week(
        size=args.menu_size,
        volume=args.sales_volume,
        coverage=args.coverage,
        output_dir=args.output,
    )

    print("✅ Sample week generated\n")
    print(f"   Menu items: {len(week['menu_df'])}")
    print(f"   POS rows: {len(week['pos_df'])}")
    print(f"   Cost rows: {len(week['cost_df'])}")
    print(f"   • {week['pos_path']}")
    print(f"   • {week['cost_path']}")


if __name__ == "__main__":
    main()

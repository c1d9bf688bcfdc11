"""
POS Upload Loader
=================

Turns a raw POS product-mix export (Toast, Square, generic CSV/Excel) into
one aggregated row per menu item for the week:

1. Suggest a column mapping from the file headers (synonym sets + fuzzy scoring)
2. Parse currency strings ("$1,234.50", "(5.00)") into numbers
3. Skip refund/void rows (negative quantity or sales) and count them
4. Sum duplicate rows per (category, item name)
5. Derive a deterministic item id and flag owner-designated anchor items

The same mapping helpers are used for external cost exports (see
cost_resolver.load_external_costs) with the cost field definitions.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd


# =============================================================================
# FIELD DEFINITIONS (canonical field -> synonyms)
# =============================================================================

POS_FIELD_DEFINITIONS: Dict[str, dict] = {
    "item_name": {
        "required": True,
        "synonyms": [
            "menu item", "item", "item name", "name", "product",
            "description", "product name", "menu item name",
        ],
    },
    "category": {
        "required": False,
        "synonyms": [
            "category", "menu group", "menu section", "group", "section",
            "menu category", "item category", "product category",
        ],
    },
    "quantity_sold": {
        "required": True,
        "synonyms": [
            "qty", "quantity", "quantity sold", "count", "units", "items sold",
            "qty sold", "sold", "units sold", "total qty", "total quantity",
        ],
    },
    "net_sales": {
        "required": True,
        "synonyms": [
            "net sales", "net", "sales net", "net revenue", "total net sales",
            "net amount", "net total", "sales after discounts",
        ],
    },
    "gross_sales": {
        "required": False,
        "synonyms": [
            "gross sales", "gross", "sales gross", "gross revenue",
            "total gross sales", "gross amount", "sales before discounts",
        ],
    },
}

COST_FIELD_DEFINITIONS: Dict[str, dict] = {
    "item_name": POS_FIELD_DEFINITIONS["item_name"],
    "category": POS_FIELD_DEFINITIONS["category"],
    "avg_cost_base": {
        "required": True,
        "synonyms": [
            "average cost", "avg cost", "unit cost", "recipe cost", "food cost",
            "base cost", "cost per unit", "ingredient cost",
        ],
    },
    "modifier_cost": {
        "required": False,
        "synonyms": [
            "modifier cost", "modifiers cost", "mod cost", "add on cost",
            "addon cost", "extra cost",
        ],
    },
    "total_cost": {
        "required": False,
        "synonyms": ["total cost", "cost total", "all in cost", "full cost", "combined cost"],
    },
    "items_sold_cost": {
        "required": False,
        "synonyms": [
            "items sold", "qty sold", "quantity sold", "units sold",
            "sold count", "pmix qty",
        ],
    },
    "total_revenue_cost": {
        "required": False,
        "synonyms": ["total revenue", "revenue", "sales", "total sales", "pmix revenue"],
    },
    "theoretical_cost_pct": {
        "required": False,
        "synonyms": [
            "theoretical cost", "theoretical", "cost pct", "cost percent",
            "cost percentage", "food cost pct", "food cost percent",
        ],
    },
}

# Terms that nudge scores up for headers typical of a given export
POS_PRESETS: Dict[str, List[str]] = {
    "toast": ["menu item", "menu group", "qty", "void", "comp", "net amount"],
    "square": ["gross sales", "discounts", "net sales", "item variation", "product"],
    "generic": [],
    "marginedge": ["average cost", "modifier cost", "total cost", "theoretical", "recipe", "items sold", "pmix"],
}

MIN_MATCH_SCORE = 0.3
LOW_CONFIDENCE_SCORE = 0.7


# =============================================================================
# HEADER MAPPING
# =============================================================================

def normalize_header(header: str) -> str:
    """'Net Sales ($)' -> 'net sales'"""
    text = str(header).lower().strip()
    text = re.sub(r"[$€£¥₹]", "", text)
    text = text.replace("_", " ")
    text = re.sub(r"[^\w\s']", " ", text)
    text = re.sub(r"\s'\s", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def header_similarity(normalized: str, synonym: str) -> float:
    """
    Score 0-1 between a normalized header and a synonym.

    Exact match 1.0; one containing the other 0.7-0.9 by length ratio;
    shared words up to 0.7; abbreviation prefixes (qty/quantity) 0.3-0.6.
    """
    if not normalized:
        return 0.0
    if normalized == synonym:
        return 1.0

    if synonym in normalized or normalized in synonym:
        longer = max(len(normalized), len(synonym))
        shorter = min(len(normalized), len(synonym))
        return 0.7 + (shorter / longer) * 0.2

    header_words = set(normalized.split(" "))
    synonym_words = set(synonym.split(" "))
    shared = header_words & synonym_words
    if shared:
        return len(shared) / len(header_words | synonym_words) * 0.7

    for word in sorted(header_words):
        for syn_word in sorted(synonym_words):
            if syn_word.startswith(word) or word.startswith(syn_word):
                longer = max(len(word), len(syn_word))
                shorter = min(len(word), len(syn_word))
                if shorter >= 3:
                    return 0.3 + (shorter / longer) * 0.3
    return 0.0


def suggest_column_mapping(headers: Iterable[str],
                           field_definitions: Dict[str, dict] = None,
                           preset: str = "generic") -> Tuple[Dict[str, str], Dict[str, float], List[str]]:
    """
    Suggest a {source header: canonical field} mapping.

    Every (field, header) pair is scored against the field's synonyms; the
    best pairs are assigned greedily so each field and each header is used
    once.

    Returns:
        (column_map, confidence per field, warnings)
    """
    field_definitions = field_definitions or POS_FIELD_DEFINITIONS
    headers = [str(h) for h in headers]
    bias_terms = POS_PRESETS.get(preset, [])
    normalized = [normalize_header(h) for h in headers]

    scored = []
    for field_order, (field, definition) in enumerate(field_definitions.items()):
        for idx, norm in enumerate(normalized):
            score = max(header_similarity(norm, syn) for syn in definition["synonyms"])
            if score > 0 and norm and any(t in norm or norm in t for t in bias_terms):
                score = min(1.0, score * 1.1)
            if score > MIN_MATCH_SCORE:
                scored.append((score, field_order, idx, field))

    # Highest score first; definition order then header order break ties
    scored.sort(key=lambda s: (-s[0], s[1], s[2]))

    column_map: Dict[str, str] = {}
    confidence: Dict[str, float] = {}
    used_headers = set()
    for score, _, idx, field in scored:
        if field in confidence or idx in used_headers:
            continue
        column_map[headers[idx]] = field
        confidence[field] = score
        used_headers.add(idx)

    warnings = []
    required = [f for f, d in field_definitions.items() if d["required"]]
    missing = [f for f in required if f not in confidence]
    if missing:
        warnings.append(f"Missing required fields: {', '.join(missing)}")
    for field in required:
        if field in confidence and confidence[field] < LOW_CONFIDENCE_SCORE:
            header = next(h for h, f in column_map.items() if f == field)
            warnings.append(
                f'Low confidence mapping for {field}: "{header}" ({round(confidence[field] * 100)}%)'
            )

    return column_map, confidence, warnings


# =============================================================================
# FILE READING + PARSING
# =============================================================================

def read_table(path: str) -> pd.DataFrame:
    """Read CSV/Excel with encoding fallback (UTF-8 with BOM, then latin-1)."""
    if str(path).lower().endswith((".xlsx", ".xls")):
        return pd.read_excel(path)
    try:
        return pd.read_csv(path, encoding="utf-8-sig")
    except UnicodeDecodeError:
        print(f"⚠️  UTF-8 decode failed, trying latin-1 encoding for {path}")
        return pd.read_csv(path, encoding="latin-1")


def parse_money(series: pd.Series) -> pd.Series:
    """
    Currency and percent strings to floats ("28.5%" -> 28.5). Accounting
    negatives "(5.00)" become -5.0; anything unparseable becomes NaN.
    """
    if pd.api.types.is_numeric_dtype(series):
        return series.astype(float)

    text = series.astype(str).str.strip()
    is_accounting_negative = text.str.match(r"^\(.*\)$")
    cleaned = (
        text.str.replace(r"[£$€¥%(),\s]", "", regex=True)
        .replace({"": np.nan, "nan": np.nan, "None": np.nan})
    )
    values = pd.to_numeric(cleaned, errors="coerce")
    return pd.Series(np.where(is_accounting_negative, -values, values), index=series.index)


def normalize_item_name(name: str) -> str:
    """Lowercase, trimmed, single-spaced name used as the match key."""
    return re.sub(r"\s+", " ", str(name).strip().lower())


def _slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", str(text).lower()).strip("-")


def make_item_id(item_name: str, category: Optional[str] = None) -> str:
    """Deterministic id from category + name ('burgers--classic-burger')."""
    return f"{_slugify(category or 'uncategorized')}--{_slugify(item_name)}"


def apply_column_map(raw: pd.DataFrame,
                     column_map: Optional[Dict[str, str]],
                     field_definitions: Dict[str, dict],
                     label: str = "POS file") -> pd.DataFrame:
    """Rename source headers to canonical fields, suggesting a map when none is given."""
    if column_map is None:
        column_map, _, warnings = suggest_column_mapping(raw.columns, field_definitions)
        for warning in warnings:
            print(f"⚠️  WARNING: {warning}")

    frame = raw.rename(columns={k: v for k, v in column_map.items() if k in raw.columns})
    required = [f for f, d in field_definitions.items() if d["required"]]
    missing = [c for c in required if c not in frame.columns]
    if missing:
        raise ValueError(
            f"❌ CRITICAL: {label} missing required columns: {missing}\n"
            f"Available columns: {list(raw.columns)}\n"
            f"Please pass a column_map naming the source header for each field"
        )
    return frame


# =============================================================================
# AGGREGATION
# =============================================================================

def aggregate_pos_rows(raw: pd.DataFrame,
                       column_map: Optional[Dict[str, str]] = None,
                       anchor_items: Optional[Iterable[str]] = None) -> Tuple[pd.DataFrame, dict]:
    """
    Aggregate raw POS rows into one row per (category, item name).

    Returns:
        (items_df, load_stats) where items_df has columns
        item_id, item_name, category ("" when the export has none),
        quantity_sold, net_sales, is_anchor
        and load_stats counts rows read, skipped and merged.
    """
    frame = apply_column_map(raw, column_map, POS_FIELD_DEFINITIONS).copy()

    frame["item_name"] = frame["item_name"].astype(str).str.strip()
    if "category" in frame.columns:
        frame["category"] = frame["category"].where(frame["category"].notna(), "")
        frame["category"] = frame["category"].astype(str).str.strip()
    else:
        frame["category"] = ""

    frame["quantity_sold"] = parse_money(frame["quantity_sold"])
    frame["net_sales"] = parse_money(frame["net_sales"])

    rows_read = len(frame)
    invalid = (
        frame["item_name"].isin(["", "nan", "None"])
        | frame["quantity_sold"].isna()
        | frame["net_sales"].isna()
    )
    refunds = ~invalid & ((frame["quantity_sold"] < 0) | (frame["net_sales"] < 0))

    if invalid.sum() > 0:
        print(f"⚠️  WARNING: Skipped {int(invalid.sum())} rows with missing item name, quantity or sales")
    if refunds.sum() > 0:
        print(f"ℹ️  Skipped {int(refunds.sum())} refund/void rows (negative quantity or sales)")

    valid = frame[~invalid & ~refunds]

    items_df = (
        valid.groupby(["category", "item_name"], as_index=False, sort=True)
        .agg(quantity_sold=("quantity_sold", "sum"), net_sales=("net_sales", "sum"))
    )
    items_df.insert(
        0,
        "item_id",
        [make_item_id(n, c) for n, c in zip(items_df["item_name"], items_df["category"])],
    )

    anchors = {normalize_item_name(a) for a in (anchor_items or [])}
    items_df["is_anchor"] = items_df["item_name"].map(normalize_item_name).isin(anchors)

    load_stats = {
        "rows_read": rows_read,
        "invalid_rows_skipped": int(invalid.sum()),
        "refund_rows_skipped": int(refunds.sum()),
        "duplicate_rows_merged": int(len(valid) - len(items_df)),
        "items": int(len(items_df)),
    }
    return items_df, load_stats

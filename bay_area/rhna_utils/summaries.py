import logging

import pandas as pd

from rhna_utils.config import (
    AFFORDABLE_LEVELS,
    OTHER_PERMIT_CATEGORY,
    PERMIT_CATEGORIES,
    TOTAL_LEVEL,
)
from rhna_utils.metrics import baseline_growth_rates, safe_ratio

logger = logging.getLogger(__name__)

REGION_NAME = "Bay Area"
CATEGORY_ORDER = list(PERMIT_CATEGORIES.values()) + [OTHER_PERMIT_CATEGORY]


def summarize(comparison, by=None):
    """
    Grouped summary of the comparison table with ratios recomputed from sums.

    Rows are always split by income level (existing units repeat on every
    level of a jurisdiction, so they are only additive within a level). `by`
    adds further keys, e.g. 'county'. Missing permits count as zero; the
    growth ratios use only jurisdictions with a known housing stock.
    """
    keys = ([by] if isinstance(by, str) else list(by or [])) + ["income_level"]
    df = comparison.copy()
    df["permitted_units"] = df["permitted_units"].fillna(0)
    known = df["existing_units"].notna()
    df["target_units_scaled_known"] = df["target_units_scaled"].where(known, 0)
    df["permitted_units_known"] = df["permitted_units"].where(known, 0)

    sums = df.groupby(keys, sort=False).agg(
        jurisdictions=("jurisdiction", "nunique"),
        target_units=("target_units", "sum"),
        target_units_scaled=("target_units_scaled", "sum"),
        permitted_units=("permitted_units", "sum"),
        existing_units=("existing_units", "sum"),
        population=("population", "sum"),
        target_units_scaled_known=("target_units_scaled_known", "sum"),
        permitted_units_known=("permitted_units_known", "sum"),
    ).reset_index()

    sums["progress"] = safe_ratio(sums["permitted_units"], sums["target_units_scaled"])
    sums["growth_rate"] = safe_ratio(sums["target_units_scaled_known"], sums["existing_units"])
    sums["actual_growth_rate"] = safe_ratio(sums["permitted_units_known"], sums["existing_units"])

    baseline = baseline_growth_rates(comparison)
    sums["baseline_growth_rate"] = sums["income_level"].map(baseline).astype("Float64")
    sums["target_strength"] = safe_ratio(sums["growth_rate"], sums["baseline_growth_rate"])
    sums["actual_growth_strength"] = safe_ratio(sums["actual_growth_rate"], sums["baseline_growth_rate"])
    return sums.drop(columns=["target_units_scaled_known", "permitted_units_known"])


def summarize_by_county(comparison):
    return summarize(comparison, by="county")


def summarize_by_income_level(comparison):
    """Region-wide summary, one row per income level including 'total'."""
    return summarize(comparison)


def summarize_region(comparison):
    """Single Bay Area row at the 'total' level."""
    summary = summarize(comparison)
    region = summary[summary["income_level"] == TOTAL_LEVEL].reset_index(drop=True)
    region.insert(0, "region", REGION_NAME)
    return region


def top_n(df, metric, n, keep_ties=False):
    """
    The n rows with the largest `metric`, rows with an undefined metric excluded.

    Ties keep input order. By default the result is truncated to exactly n
    rows; keep_ties=True also returns every row tied with the n-th value, so
    the result may be longer than n.
    """
    if n <= 0:
        return df.iloc[0:0]
    ranked = df[df[metric].notna()]
    ranked = (ranked.assign(_pos=range(len(ranked)))
              .sort_values([metric, "_pos"], ascending=[False, True])
              .drop(columns="_pos"))
    if not keep_ties or len(ranked) <= n:
        return ranked.head(n)
    cutoff = ranked[metric].iloc[n - 1]
    return ranked[ranked[metric] >= cutoff]


def _observed(permits, config):
    return permits[permits["year"].isin(config.OBSERVATION_YEARS)]


def tpa_proportions(permits, config, jurisdictions=None):
    """
    Share of affordable (very low, low, moderate) permitted units that sit in
    a transit priority area, per jurisdiction. Jurisdictions with no
    affordable permits get 0. Pass `jurisdictions` (names) to include
    jurisdictions with no permits at all.
    """
    levels = [level for level in AFFORDABLE_LEVELS if level in config.INCOME_LEVELS]
    window = _observed(permits, config)
    affordable = window[levels].sum(axis=1)
    df = pd.DataFrame({
        "jurisdiction": window["jurisdiction"],
        "affordable_units": affordable,
        "tpa_affordable_units": affordable.where(window["is_tpa"], 0),
    })
    grouped = df.groupby("jurisdiction", sort=False)[["affordable_units", "tpa_affordable_units"]].sum()
    if jurisdictions is not None:
        grouped = grouped.reindex(list(dict.fromkeys(jurisdictions)), fill_value=0)

    proportion = safe_ratio(grouped["tpa_affordable_units"], grouped["affordable_units"])
    grouped["tpa_proportion"] = proportion.fillna(0.0)
    return grouped.reset_index()


def category_counts(permits, config, by=None):
    """
    Permitted units by structure category and income level over the
    observation window, with each row's share of all units (treemap input).

    `by` adds grouping keys such as 'county' or 'is_tpa'; shares are then
    within each group.
    """
    keys = [by] if isinstance(by, str) else list(by or [])
    levels = list(config.INCOME_LEVELS)
    window = _observed(permits, config)
    long = window.melt(
        id_vars=keys + ["category"], value_vars=levels,
        var_name="income_level", value_name="units",
    )
    counts = long.groupby(keys + ["category", "income_level"], sort=False)["units"].sum().reset_index()

    counts["_c"] = counts["category"].map({c: i for i, c in enumerate(CATEGORY_ORDER)})
    counts["_l"] = counts["income_level"].map({l: i for i, l in enumerate(levels)})
    counts = (counts.sort_values(keys + ["_c", "_l"], kind="mergesort")
              .drop(columns=["_c", "_l"])
              .reset_index(drop=True))

    group_total = counts.groupby(keys)["units"].transform("sum") if keys else counts["units"].sum()
    counts["share"] = safe_ratio(counts["units"], pd.Series(group_total, index=counts.index)).fillna(0.0)
    logger.debug(f"Permit category counts: {len(counts)} rows, {int(counts['units'].sum()):,} units")
    return counts

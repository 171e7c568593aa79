"""
Metric engine: joins RHNA targets, observed permits and demographics into one
long-form comparison table (jurisdiction x income level, plus a 'total'
level) and derives the ratio metrics used throughout the report.

    progress                permitted_units / target_units_scaled
    growth_rate             target_units_scaled / existing_units
    baseline_growth_rate    regional sum(target_units_scaled) / sum(existing_units), per level
    target_strength         growth_rate / baseline_growth_rate
    actual_growth_rate      permitted_units / existing_units
    actual_growth_strength  actual_growth_rate / baseline_growth_rate

Every aggregate is a ratio of sums. A ratio with a zero or missing
denominator is <NA> in a nullable Float64 column, never inf.
"""

import logging

import pandas as pd

from rhna_utils.config import TOTAL_LEVEL
from rhna_utils.demographics import DEMOGRAPHIC_COLUMNS

logger = logging.getLogger(__name__)

RATIO_COLUMNS = [
    "progress",
    "growth_rate",
    "baseline_growth_rate",
    "target_strength",
    "actual_growth_rate",
    "actual_growth_strength",
]

COMPARISON_COLUMNS = [
    "jurisdiction",
    "county",
    "income_level",
    "target_units",
    "target_units_scaled",
    "permitted_units",
    "existing_units",
    "population",
] + RATIO_COLUMNS


def horizon_scale_factor(config):
    """Share of the planning horizon covered by the observed permit years (3 of 8 -> 0.375)."""
    if config.HORIZON_YEARS <= 0:
        raise ValueError(f"Planning horizon must be positive, got {config.HORIZON_YEARS}")
    return len(config.OBSERVATION_YEARS) / config.HORIZON_YEARS


def safe_ratio(numerator, denominator):
    """
    Element-wise numerator / denominator as a nullable Float64 Series.

    The result is <NA> wherever the denominator is zero, negative or missing,
    or the numerator is missing.
    """
    num = pd.Series(numerator).astype("Float64")
    den = pd.Series(denominator).astype("Float64")
    defined = (num.notna() & den.notna() & (den > 0)).fillna(False).astype(bool)

    out = pd.Series(pd.NA, index=num.index, dtype="Float64")
    out[defined] = num[defined] / den[defined]
    return out


def levels_with_total(config):
    return list(config.INCOME_LEVELS) + [TOTAL_LEVEL]


def check_target_totals(targets, config, issues):
    """Record jurisdictions whose published total differs from the sum of its levels."""
    levels = list(config.INCOME_LEVELS)
    level_sum = targets[levels].sum(axis=1)
    mismatch = (targets["total"] - level_sum).abs() > config.TARGET_TOTAL_TOLERANCE
    for _, row in targets[mismatch].iterrows():
        issues.violation(
            row["jurisdiction"],
            f"RHNA total {row['total']:,} != sum of income levels {int(row[levels].sum()):,}; using the level sum",
        )
    return int(mismatch.sum())


def sum_permits(permits, config, issues=None):
    """
    Permitted units per jurisdiction and income level over the observation window.

    Returns one row per jurisdiction with a column per income level plus
    'total', the sum of the levels.
    """
    levels = list(config.INCOME_LEVELS)
    in_window = permits["year"].isin(config.OBSERVATION_YEARS)
    if (~in_window).any():
        logger.info(f"Ignoring {int((~in_window).sum()):,} permit records outside {list(config.OBSERVATION_YEARS)}")
    window = permits[in_window]

    summed = window.groupby("jurisdiction", sort=False)[levels + ["total"]].sum()
    level_sum = summed[levels].sum(axis=1)
    if issues is not None:
        for name in summed.index[summed["total"] != level_sum]:
            issues.violation(
                name,
                f"permit total {int(summed.at[name, 'total']):,} != sum of income levels "
                f"{int(level_sum[name]):,}; using the level sum",
            )
    summed[TOTAL_LEVEL] = level_sum
    logger.info(f"Summed {int(level_sum.sum()):,} permitted units for {len(summed)} jurisdictions")
    return summed.reset_index()


def baseline_growth_rates(comparison):
    """
    Region-wide target growth rate per income level:
    sum(target_units_scaled) / sum(existing_units) over jurisdictions with a
    known housing stock.
    """
    known = comparison[comparison["existing_units"].notna()]
    sums = known.groupby("income_level", sort=False)[["target_units_scaled", "existing_units"]].sum()
    rates = safe_ratio(sums["target_units_scaled"], sums["existing_units"])
    return rates.reindex(comparison["income_level"].unique())


def derive_ratios(comparison):
    """Add the six ratio columns to a frame holding the count columns."""
    df = comparison.copy()
    df["progress"] = safe_ratio(df["permitted_units"], df["target_units_scaled"])
    df["growth_rate"] = safe_ratio(df["target_units_scaled"], df["existing_units"])

    baseline = baseline_growth_rates(df)
    df["baseline_growth_rate"] = df["income_level"].map(baseline).astype("Float64")
    df["target_strength"] = safe_ratio(df["growth_rate"], df["baseline_growth_rate"])
    df["actual_growth_rate"] = safe_ratio(df["permitted_units"], df["existing_units"])
    df["actual_growth_strength"] = safe_ratio(df["actual_growth_rate"], df["baseline_growth_rate"])
    return df


def build_comparison(targets, permits, jurisdictions, config, issues):
    """
    Build the long-form comparison table.

    One row per RHNA jurisdiction x income level (including 'total'). Targets
    are scaled to the observation window, permits are summed over it and a
    missing permit count is zero. Population and existing units come from the
    resolved jurisdictions; jurisdictions without geometry keep their targets
    and permits with missing demographics.
    """
    levels = list(config.INCOME_LEVELS)
    all_levels = levels_with_total(config)
    factor = horizon_scale_factor(config)
    logger.info(f"Scaling {config.HORIZON_YEARS}-year targets to {len(config.OBSERVATION_YEARS)} observed years "
                f"(factor {factor:.4f})")

    check_target_totals(targets, config, issues)
    wide_targets = targets[["jurisdiction", "county"] + levels].copy()
    wide_targets[TOTAL_LEVEL] = wide_targets[levels].sum(axis=1)

    long_targets = wide_targets.melt(
        id_vars=["jurisdiction", "county"], value_vars=all_levels,
        var_name="income_level", value_name="target_units",
    )

    permitted = sum_permits(permits, config, issues)
    unknown = sorted(set(permitted["jurisdiction"]) - set(targets["jurisdiction"]))
    if unknown:
        logger.warning(f"Permits for jurisdictions without RHNA targets are left out: {unknown}")
    long_permits = permitted.melt(
        id_vars="jurisdiction", value_vars=all_levels,
        var_name="income_level", value_name="permitted_units",
    )

    comparison = long_targets.merge(long_permits, on=["jurisdiction", "income_level"], how="left")
    comparison["permitted_units"] = comparison["permitted_units"].fillna(0).astype("int64")
    comparison["target_units_scaled"] = comparison["target_units"] * factor

    demographics = pd.DataFrame(jurisdictions.drop(columns="geometry", errors="ignore"))
    for col in DEMOGRAPHIC_COLUMNS:
        if col not in demographics.columns:
            demographics[col] = pd.array([pd.NA] * len(demographics), dtype="Int64")
    demographics = demographics[["jurisdiction"] + DEMOGRAPHIC_COLUMNS].drop_duplicates("jurisdiction")
    comparison = comparison.merge(demographics, on="jurisdiction", how="left")
    for col in DEMOGRAPHIC_COLUMNS:
        comparison[col] = comparison[col].astype("Int64")

    order = {name: i for i, name in enumerate(targets["jurisdiction"])}
    level_order = {level: i for i, level in enumerate(all_levels)}
    comparison = (comparison
                  .assign(_j=comparison["jurisdiction"].map(order),
                          _l=comparison["income_level"].map(level_order))
                  .sort_values(["_j", "_l"], kind="mergesort")
                  .drop(columns=["_j", "_l"])
                  .reset_index(drop=True))

    comparison = derive_ratios(comparison)
    logger.info(f"Comparison table: {len(comparison)} rows for {comparison['jurisdiction'].nunique()} jurisdictions")
    undefined = comparison[RATIO_COLUMNS].isna().sum()
    for col, count in undefined.items():
        if count:
            logger.debug(f"  {col}: {count} undefined value(s)")
    return comparison[COMPARISON_COLUMNS]

import logging

import matplotlib.pyplot as plt
import numpy as np

from rhna_utils.config import INCOME_LEVEL_LABELS, TOTAL_LEVEL

logger = logging.getLogger(__name__)


def _values(series):
    """Nullable column -> float array with NaN for missing values."""
    return series.to_numpy(dtype=float, na_value=np.nan)


def _label(level):
    return INCOME_LEVEL_LABELS.get(level, level.title())


def _finish(fig, path):
    fig.tight_layout()
    if path is not None:
        fig.savefig(path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Chart saved to {path}")
    return fig


def strength_scatter(comparison, config, level=TOTAL_LEVEL, path=None):
    """Target strength vs actual growth strength, one point per jurisdiction."""
    df = comparison[comparison["income_level"] == level]
    x = _values(df["target_strength"])
    y = _values(df["actual_growth_strength"])
    shown = ~(np.isnan(x) | np.isnan(y))

    fig, ax = plt.subplots(figsize=(8, 8))
    ax.scatter(x[shown], y[shown], alpha=0.7,
               color=config.PALETTES['income_levels'].get(level, "#333333"))
    if shown.any():
        top = max(np.nanmax(x[shown]), np.nanmax(y[shown]), 1.0) * 1.05
        ax.plot([0, top], [0, top], 'k--', alpha=0.4)
    ax.axhline(1.0, color='grey', linewidth=0.8)
    ax.axvline(1.0, color='grey', linewidth=0.8)
    ax.set_xlabel('Target strength (growth rate / Bay Area baseline)')
    ax.set_ylabel('Actual growth strength (permit growth / Bay Area baseline)')
    ax.set_title(f'RHNA strength by jurisdiction: {_label(level)}')
    ax.grid(alpha=0.3)
    logger.debug(f"Strength scatter: {int(shown.sum())} of {len(df)} jurisdictions plotted")
    return _finish(fig, path)


def county_progress_chart(county_summary, config, path=None):
    """Grouped bars of progress per county, one bar per income level."""
    counties = list(dict.fromkeys(county_summary["county"]))
    levels = [level for level in list(config.INCOME_LEVELS) + [TOTAL_LEVEL]
              if level in set(county_summary["income_level"])]
    width = 0.8 / max(len(levels), 1)
    positions = np.arange(len(counties))

    fig, ax = plt.subplots(figsize=(14, 6))
    for i, level in enumerate(levels):
        rows = county_summary[county_summary["income_level"] == level].set_index("county")
        heights = _values(rows["progress"].reindex(counties))
        ax.bar(positions + i * width, np.nan_to_num(heights), width,
               label=_label(level), color=config.PALETTES['income_levels'].get(level))

    ax.axhline(1.0, color='black', linestyle='--', linewidth=0.8)
    ax.set_xticks(positions + width * (len(levels) - 1) / 2)
    ax.set_xticklabels(counties, rotation=45, ha='right')
    ax.set_ylabel('Permitted units / scaled RHNA target')
    ax.set_title('RHNA progress by county')
    ax.legend()
    ax.grid(axis='y', alpha=0.3)
    return _finish(fig, path)


def progress_map(jurisdictions, comparison, config, level=TOTAL_LEVEL, path=None):
    """Choropleth of progress by jurisdiction; jurisdictions without a ratio are hatched grey."""
    progress = comparison.loc[comparison["income_level"] == level, ["jurisdiction", "progress"]]
    gdf = jurisdictions[["jurisdiction", "geometry"]].merge(progress, on="jurisdiction", how="left")
    gdf["progress"] = _values(gdf["progress"])

    fig, ax = plt.subplots(figsize=(10, 10))
    gdf.plot(
        column="progress",
        cmap=config.PALETTES['progress_cmap'],
        vmin=0,
        vmax=max(2.0, float(np.nanmax(gdf["progress"]))) if gdf["progress"].notna().any() else 2.0,
        legend=True,
        edgecolor='white',
        linewidth=0.3,
        missing_kwds={'color': 'lightgrey', 'hatch': '///', 'label': 'No data'},
        ax=ax,
    )
    ax.set_axis_off()
    ax.set_title(f'RHNA progress: {_label(level)}')
    return _finish(fig, path)

"""
Source loaders for the RHNA comparison pipeline.

Each loader reads one raw input and returns a normalized table with the
canonical column set:

  targets   county, jurisdiction, vlow, low, mod, amod, total
  permits   jurisdiction, county, countyfp, year, category, is_tpa, vlow, low, mod, amod, total
  places    name, geoid, classfp, geometry
  counties  county, countyfp, geoid, geometry

Malformed input raises LoadError; nothing is zero-filled.
"""

import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd

from rhna_utils.config import (
    BAY_AREA_COUNTY_FIPS,
    CA_STATE_FIPS,
    INCOME_LEVELS,
    OTHER_PERMIT_CATEGORY,
    PERMIT_CATEGORIES,
    UNINCORPORATED_MARKER,
    get_county_name_mapping,
    unincorporated_name,
)
from rhna_utils.issues import LoadError

logger = logging.getLogger(__name__)

TPA_TRUE = {"1", "true", "t", "yes", "y", "tpa"}
TPA_FALSE = {"0", "false", "f", "no", "n", "", "non-tpa"}


def _check_exists(path, label):
    path = Path(path)
    if not path.exists():
        raise LoadError(f"{label} file not found: {path}")
    return path


def _read_csv(path, label):
    path = _check_exists(path, label)
    logger.info(f"Reading {label} from {path}")
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise LoadError(f"Unable to parse {label} file {path}: {e}") from e
    df.columns = df.columns.str.strip()
    logger.info(f"  {label}: {len(df):,} rows, {len(df.columns)} columns")
    return df


def _rename_required(df, column_map, label, optional=()):
    """Rename raw fields to canonical names, failing on any missing required field."""
    missing = [raw for raw, canon in column_map.items() if raw not in df.columns and canon not in optional]
    if missing:
        raise LoadError(f"{label} is missing required columns {missing}. Found: {list(df.columns)}")
    present = {raw: canon for raw, canon in column_map.items() if raw in df.columns}
    return df[list(present)].rename(columns=present)


def parse_counts(df, columns, label):
    """
    Parse count columns as non-negative integers.

    Thousands separators are accepted ("1,234"); blanks, text, fractions and
    negative values abort the load with the offending rows listed.
    """
    df = df.copy()
    for col in columns:
        raw = df[col].astype(str).str.strip().str.replace(",", "", regex=False)
        values = pd.to_numeric(raw, errors="coerce")
        bad = values.isna() | (values < 0) | (values % 1 != 0)
        if bad.any():
            sample = df.loc[bad, col].head(5).tolist()
            rows = df.index[bad][:5].tolist()
            raise LoadError(
                f"{label}: column '{col}' has {int(bad.sum())} value(s) that are not "
                f"non-negative integers, e.g. rows {rows}: {sample}"
            )
        df[col] = values.astype("int64")
    return df


def rewrite_unincorporated(df):
    """'Unincorporated' jurisdictions become '<County> Unincorporated'."""
    df = df.copy()
    df["jurisdiction"] = df["jurisdiction"].str.strip()
    mask = df["jurisdiction"].str.lower() == UNINCORPORATED_MARKER.lower()
    if mask.any():
        df.loc[mask, "jurisdiction"] = df.loc[mask, "county"].map(unincorporated_name)
        logger.debug(f"Renamed {int(mask.sum())} unincorporated rows")
    return df


def load_targets(path, config):
    """
    Load the RHNA allocation table: one row per jurisdiction with the four
    income-level unit targets and their total for the planning horizon.
    """
    df = _read_csv(path, "RHNA targets")
    df = _rename_required(df, config.TARGET_COLUMNS, "RHNA targets")
    df["county"] = df["county"].str.strip().str.replace(r"\s+County$", "", regex=True)
    df = df[df["jurisdiction"].str.strip() != ""]
    df = parse_counts(df, list(INCOME_LEVELS) + ["total"], "RHNA targets")

    unknown = sorted(set(df["county"]) - set(BAY_AREA_COUNTY_FIPS))
    if unknown:
        raise LoadError(f"RHNA targets reference counties outside the Bay Area: {unknown}")

    df = rewrite_unincorporated(df)
    duplicated = df["jurisdiction"][df["jurisdiction"].duplicated()].unique().tolist()
    if duplicated:
        raise LoadError(f"RHNA targets list jurisdictions more than once: {duplicated}")

    logger.info(f"Loaded RHNA targets for {len(df)} jurisdictions, {df['total'].sum():,} units")
    return df[["county", "jurisdiction"] + list(INCOME_LEVELS) + ["total"]].reset_index(drop=True)


def _parse_tpa(series, label):
    flags = series.astype(str).str.strip().str.lower()
    unknown = ~flags.isin(TPA_TRUE | TPA_FALSE)
    if unknown.any():
        raise LoadError(f"{label}: unrecognised TPA flag values {flags[unknown].unique()[:5].tolist()}")
    return flags.isin(TPA_TRUE)


def _normalize_category(series):
    codes = series.astype(str).str.strip()
    canonical = set(PERMIT_CATEGORIES.values())
    return codes.map(lambda c: PERMIT_CATEGORIES.get(c, c if c in canonical else OTHER_PERMIT_CATEGORY))


def load_permits(path, config):
    """Load the permit records, one row per permit with unit counts by income level."""
    label = "Housing permits"
    df = _read_csv(path, label)
    df = _rename_required(df, config.PERMIT_COLUMNS, label, optional=("total",))
    df = parse_counts(df, list(INCOME_LEVELS) + ["year"], label)

    if "total" in df.columns:
        df = parse_counts(df, ["total"], label)
    else:
        df["total"] = df[list(INCOME_LEVELS)].sum(axis=1)

    # county FIPS arrives as 1, 001 or 06001
    df["countyfp"] = df["countyfp"].astype(str).str.strip().str.zfill(3).str[-3:]
    df["county"] = df["countyfp"].map(get_county_name_mapping())
    unknown = df.loc[df["county"].isna(), "countyfp"].unique().tolist()
    if unknown:
        raise LoadError(f"{label}: county codes outside the Bay Area: {unknown}")

    df["category"] = _normalize_category(df["category"])
    df["is_tpa"] = _parse_tpa(df["is_tpa"], label)
    df = rewrite_unincorporated(df)

    logger.info(f"Loaded {len(df):,} permit records for years {sorted(df['year'].unique().tolist())}")
    columns = ["jurisdiction", "county", "countyfp", "year", "category", "is_tpa"] + list(INCOME_LEVELS) + ["total"]
    return df[columns].reset_index(drop=True)


def _read_geo(path, label):
    path = _check_exists(path, label)
    logger.info(f"Reading {label} from {path}")
    try:
        gdf = gpd.read_file(path, engine="pyogrio")
    except Exception as e:
        raise LoadError(f"Unable to read {label} file {path}: {e}") from e
    if gdf.crs is None:
        raise LoadError(f"{label} file {path} has no coordinate reference system")
    logger.info(f"  {label}: {len(gdf):,} features, CRS: {gdf.crs}")
    return gdf


def load_places(path, config):
    """Load the place boundary polygons (cities, towns and CDPs)."""
    gdf = _read_geo(path, "Place boundaries")
    if "STATEFP" in gdf.columns:
        gdf = gdf[gdf["STATEFP"].astype(str).str.zfill(2) == CA_STATE_FIPS]
    attrs = _rename_required(pd.DataFrame(gdf.drop(columns=gdf.geometry.name)), config.PLACE_COLUMNS,
                             "Place boundaries", optional=("classfp",))
    if "classfp" not in attrs.columns:
        attrs["classfp"] = None
    attrs["name"] = attrs["name"].astype(str).str.strip()
    attrs["geoid"] = attrs["geoid"].astype(str).str.strip()
    return gpd.GeoDataFrame(
        attrs[["name", "geoid", "classfp"]], geometry=gdf.geometry.values, crs=gdf.crs
    ).reset_index(drop=True)


def load_counties(path, config):
    """Load county boundary polygons, keeping the nine Bay Area counties."""
    gdf = _read_geo(path, "County boundaries")
    if "STATEFP" in gdf.columns:
        gdf = gdf[gdf["STATEFP"].astype(str).str.zfill(2) == CA_STATE_FIPS]
    attrs = _rename_required(pd.DataFrame(gdf.drop(columns=gdf.geometry.name)), config.COUNTY_COLUMNS,
                             "County boundaries", optional=("geoid",))
    attrs["countyfp"] = attrs["countyfp"].astype(str).str.strip().str.zfill(3)
    if "geoid" not in attrs.columns:
        attrs["geoid"] = CA_STATE_FIPS + attrs["countyfp"]
    attrs["county"] = attrs["countyfp"].map(get_county_name_mapping())

    counties = gpd.GeoDataFrame(
        attrs[["county", "countyfp", "geoid"]], geometry=gdf.geometry.values, crs=gdf.crs
    )
    counties = counties[counties["county"].notna()].reset_index(drop=True)

    missing = sorted(set(BAY_AREA_COUNTY_FIPS) - set(counties["county"]))
    if missing:
        logger.warning(f"County boundaries are missing Bay Area counties: {missing}")
    logger.info(f"Filtered to Bay Area: {len(counties)} counties")
    return counties

import logging

import geopandas as gpd
import pandas as pd

from rhna_utils.config import unincorporated_name

logger = logging.getLogger(__name__)

# California Albers (equal area, metres) for every area comparison
AREA_CRS = "EPSG:3310"

JURISDICTION_COLUMNS = ["jurisdiction", "county", "geoid", "kind", "geometry"]
INCORPORATED = "incorporated"
UNINCORPORATED = "unincorporated"


def area_of(geoseries):
    """Areas in square metres regardless of the series CRS."""
    if geoseries.crs is not None and geoseries.crs.is_geographic:
        geoseries = geoseries.to_crs(AREA_CRS)
    return geoseries.area


def clip_places(places, counties):
    """
    Reproject places into the county CRS and clip them to the union of the
    county polygons. Places falling entirely outside the study area are dropped.
    """
    if places.crs != counties.crs:
        logger.info(f"Reprojecting places from {places.crs} to {counties.crs}")
        places = places.to_crs(counties.crs)

    study_area = counties.geometry.make_valid().union_all()
    clipped = places.copy()
    clipped["geometry"] = places.geometry.make_valid().intersection(study_area)

    empty = clipped.geometry.isna() | clipped.geometry.is_empty
    logger.info(f"Clipped {len(places):,} places to the study area: {int((~empty).sum()):,} remain")
    return clipped[~empty].reset_index(drop=True)


def assign_place_counties(places, counties):
    """County with the largest overlap for each place, as a Series aligned to places."""
    pieces = gpd.overlay(
        places[["geoid", "geometry"]].reset_index(),
        counties[["county", "geometry"]],
        how="intersection",
        keep_geom_type=True,
    )
    if pieces.empty:
        return pd.Series(None, index=places.index, dtype=object)
    pieces["overlap"] = area_of(pieces.geometry)
    best = pieces.loc[pieces.groupby("index")["overlap"].idxmax(), ["index", "county"]]
    return best.set_index("index")["county"].reindex(places.index)


def filter_places(places, targets, counties, config, issues):
    """
    Keep the incorporated places that carry an RHNA allocation.

    Names are matched exactly against the target list. Configured GEOID
    exclusions are dropped first; a name that still matches several places is
    narrowed to the one lying mostly in the county the target table gives it.
    Anything still ambiguous is reported as a resolution gap and dropped.
    """
    places = places.copy()
    if places["classfp"].notna().any():
        incorporated = places["classfp"].astype(str).str.upper().str.startswith("C")
        logger.info(f"Dropping {int((~incorporated).sum()):,} unincorporated places (CDPs)")
        places = places[incorporated]

    excluded = places["geoid"].isin([str(g) for g in config.EXCLUDED_PLACE_GEOIDS])
    if excluded.any():
        logger.info(f"Excluding configured place GEOIDs: {places.loc[excluded, 'geoid'].tolist()}")
        places = places[~excluded]

    target_county = targets.set_index("jurisdiction")["county"]
    places = places[places["name"].isin(target_county.index)]

    duplicated = places["name"].duplicated(keep=False)
    if duplicated.any():
        dupes = places[duplicated].copy()
        dupes["place_county"] = assign_place_counties(dupes, counties)
        matches_target = dupes["place_county"] == dupes["name"].map(target_county)
        logger.info(f"Disambiguating {dupes['name'].nunique()} duplicate place names by county")
        keep = dupes[matches_target]
        still_ambiguous = keep["name"][keep["name"].duplicated(keep=False)].unique()
        for name in still_ambiguous:
            geoids = keep.loc[keep["name"] == name, "geoid"].tolist()
            issues.gap(name, f"place name matches several places in the same county {geoids}; "
                             f"add one to EXCLUDED_PLACE_GEOIDS")
        keep = keep[~keep["name"].isin(still_ambiguous)]
        places = pd.concat([places[~duplicated], keep.drop(columns="place_county")])

    places = places.assign(county=places["name"].map(target_county))
    logger.info(f"Matched {len(places)} places to RHNA jurisdictions")
    return places.reset_index(drop=True)


def unincorporated_remainders(counties, places, config):
    """
    County polygon minus the union of the resolved incorporated places, one row
    per county. Counties whose remainder is empty or a sliver are skipped.
    """
    if len(places):
        incorporated = places.geometry.union_all()
    else:
        incorporated = None

    rows = []
    for _, county in counties.iterrows():
        county_geom = county["geometry"]
        remainder = county_geom.difference(incorporated) if incorporated is not None else county_geom
        areas = area_of(gpd.GeoSeries([county_geom, remainder], crs=counties.crs))
        share = areas.iloc[1] / areas.iloc[0] if areas.iloc[0] > 0 else 0.0
        if remainder.is_empty or share < config.MIN_REMAINDER_AREA_FRACTION:
            logger.info(f"{county['county']} is fully incorporated, no unincorporated remainder")
            continue
        logger.debug(f"{county['county']} unincorporated remainder covers {share:.1%} of the county")
        rows.append({
            "jurisdiction": unincorporated_name(county["county"]),
            "county": county["county"],
            "geoid": county["geoid"],
            "kind": UNINCORPORATED,
            "geometry": remainder,
        })
    return gpd.GeoDataFrame(rows, columns=JURISDICTION_COLUMNS, geometry="geometry", crs=counties.crs)


def resolve_jurisdictions(places, counties, targets, config, issues):
    """
    Build the canonical jurisdiction set with geometry.

    Returns a GeoDataFrame with one row per incorporated RHNA jurisdiction and
    one per county unincorporated remainder, in target-table order. Target
    names left without geometry are recorded as resolution gaps.
    """
    logger.info("Resolving jurisdictions")
    counties = counties.copy()
    counties["geometry"] = counties.geometry.make_valid()

    clipped = clip_places(places, counties)
    matched = filter_places(clipped, targets, counties, config, issues)

    incorporated = gpd.GeoDataFrame(
        {
            "jurisdiction": matched["name"],
            "county": matched["county"],
            "geoid": matched["geoid"],
            "kind": INCORPORATED,
        },
        geometry=matched.geometry.values,
        crs=counties.crs,
    )
    remainders = unincorporated_remainders(counties, incorporated, config)

    jurisdictions = gpd.GeoDataFrame(
        pd.concat([incorporated, remainders], ignore_index=True),
        geometry="geometry",
        crs=counties.crs,
    )[JURISDICTION_COLUMNS]

    order = {name: i for i, name in enumerate(targets["jurisdiction"])}
    jurisdictions["_order"] = jurisdictions["jurisdiction"].map(order).fillna(len(order))
    jurisdictions = (jurisdictions.sort_values(["_order", "county", "jurisdiction"], kind="mergesort")
                     .drop(columns="_order")
                     .reset_index(drop=True))

    resolved = set(jurisdictions["jurisdiction"])
    flagged = set(issues.jurisdictions())
    for name in targets["jurisdiction"]:
        if name not in resolved and name not in flagged:
            issues.gap(name, "no matching boundary geometry")

    extra = sorted(resolved - set(order))
    if extra:
        logger.info(f"Jurisdictions with geometry but no RHNA target: {extra}")
    logger.info(f"Resolved {len(incorporated)} incorporated and {len(remainders)} unincorporated jurisdictions")
    return jurisdictions


def check_partition(jurisdictions, counties, tolerance=1e-6):
    """
    Per county, compare the county area to the pieces that cover it: every
    jurisdiction clipped to the county. Returns county, county_area,
    covered_area, overlap_area and ok (both differences within tolerance as a
    share of the county area).
    """
    rows = []
    for _, county in counties.iterrows():
        pieces = jurisdictions.geometry.intersection(county["geometry"])
        pieces = pieces[~pieces.is_empty]
        county_area = area_of(gpd.GeoSeries([county["geometry"]], crs=counties.crs)).iloc[0]
        if len(pieces):
            piece_area = area_of(pieces).sum()
            union_area = area_of(gpd.GeoSeries([pieces.union_all()], crs=counties.crs)).iloc[0]
        else:
            piece_area = union_area = 0.0
        covered_gap = abs(county_area - union_area)
        overlap = piece_area - union_area
        rows.append({
            "county": county["county"],
            "county_area": county_area,
            "covered_area": union_area,
            "overlap_area": overlap,
            "ok": covered_gap <= tolerance * county_area and overlap <= tolerance * county_area,
        })
    return pd.DataFrame(rows)


def build_match_report(targets, permits, jurisdictions):
    """
    Name-level match report across the three sources, which share no key.

    One row per jurisdiction name seen anywhere, with in_targets, in_permits
    and in_geometry flags and a status of 'matched' or the sides it is missing from.
    """
    target_names = set(targets["jurisdiction"])
    permit_names = set(permits["jurisdiction"])
    geometry_names = set(jurisdictions["jurisdiction"])

    names = sorted(target_names | permit_names | geometry_names)
    report = pd.DataFrame({"jurisdiction": names})
    report["in_targets"] = report["jurisdiction"].isin(target_names)
    report["in_permits"] = report["jurisdiction"].isin(permit_names)
    report["in_geometry"] = report["jurisdiction"].isin(geometry_names)

    def status(row):
        missing = [side for side, flag in (("targets", row.in_targets),
                                           ("permits", row.in_permits),
                                           ("geometry", row.in_geometry)) if not flag]
        return "matched" if not missing else "missing: " + ", ".join(missing)

    report["status"] = report.apply(status, axis=1)

    logger.info(f"Match report: {int((report['status'] == 'matched').sum())} of {len(report)} names matched on all sides")
    for side in ("targets", "permits", "geometry"):
        unmatched = report.loc[~report[f"in_{side}"], "jurisdiction"].tolist()
        if unmatched:
            logger.info(f"  Not in {side}: {unmatched}")
    return report


def unresolved_targets(targets, jurisdictions):
    """
    Target cities left without geometry, as county -> names in target order.
    Unincorporated targets are not listed: their area is the remainder itself.
    """
    resolved = set(jurisdictions["jurisdiction"])
    unresolved = {}
    for _, row in targets.iterrows():
        name = row["jurisdiction"]
        if name in resolved or name == unincorporated_name(row["county"]):
            continue
        unresolved.setdefault(row["county"], []).append(name)
    return unresolved

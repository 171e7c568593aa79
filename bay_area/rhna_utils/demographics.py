import logging

import pandas as pd

from rhna_utils.config import CENSUS_DEFINITIONS
from rhna_utils.geog_utils import INCORPORATED, UNINCORPORATED

logger = logging.getLogger(__name__)

DEMOGRAPHIC_COLUMNS = list(CENSUS_DEFINITIONS)


def attach_demographics(jurisdictions, place_counts, county_counts, issues, unresolved=None):
    """
    Attach population and existing housing units to every jurisdiction.

    Incorporated jurisdictions take their place-level counts by GEOID.
    Unincorporated jurisdictions get the county count minus the sum of the
    county's incorporated jurisdictions. A negative difference means the
    incorporated set over-covers the county: it is recorded as an integrity
    violation and the value is left missing rather than clamped.
    Target cities without geometry (`unresolved`, county -> names) are still
    inside the county count, so that county's remainder is left missing and
    recorded as a gap instead of absorbing them.

    Args:
        jurisdictions: resolved jurisdictions (jurisdiction, county, geoid, kind, geometry)
        place_counts: geoid, population, existing_units for places
        county_counts: geoid, population, existing_units for counties
        issues: IssueLog receiving gaps and violations
        unresolved: optional mapping of county -> target jurisdictions without geometry

    Returns:
        A copy of jurisdictions with nullable integer population and existing_units columns.
    """
    result = jurisdictions.copy()
    places = place_counts.drop_duplicates("geoid").set_index("geoid")
    counties = county_counts.drop_duplicates("geoid").set_index("geoid")
    is_incorporated = result["kind"] == INCORPORATED

    for col in DEMOGRAPHIC_COLUMNS:
        values = pd.Series(pd.NA, index=result.index, dtype="Int64")
        values[is_incorporated] = result.loc[is_incorporated, "geoid"].map(places[col]).astype("Int64")
        result[col] = values

    for _, row in result[is_incorporated].iterrows():
        missing = [col for col in DEMOGRAPHIC_COLUMNS if pd.isna(row[col])]
        if missing:
            issues.gap(row["jurisdiction"], f"no census {', '.join(missing)} for place {row['geoid']}")

    unincorporated = result.index[result["kind"] == UNINCORPORATED]
    for idx in unincorporated:
        name = result.at[idx, "jurisdiction"]
        county = result.at[idx, "county"]
        county_geoid = result.at[idx, "geoid"]
        members = result[is_incorporated & (result["county"] == county)]

        if unresolved and unresolved.get(county):
            issues.gap(name, f"apportionment includes unresolved places {list(unresolved[county])}")
            continue

        for col in DEMOGRAPHIC_COLUMNS:
            if county_geoid not in counties.index or pd.isna(counties.at[county_geoid, col]):
                issues.gap(name, f"no census {col} for county {county_geoid}")
                continue
            if members[col].isna().any():
                lacking = members.loc[members[col].isna(), "jurisdiction"].tolist()
                issues.gap(name, f"cannot apportion {col}: incorporated places lack data {lacking}")
                continue

            county_total = int(counties.at[county_geoid, col])
            incorporated_total = int(members[col].sum())
            remainder = county_total - incorporated_total
            if remainder < 0:
                issues.violation(
                    name,
                    f"negative unincorporated {col}: county {county_total:,} - "
                    f"incorporated {incorporated_total:,} = {remainder:,}",
                )
                continue
            result.at[idx, col] = remainder
            logger.debug(f"{name} {col}: {county_total:,} - {incorporated_total:,} = {remainder:,}")

    for col in DEMOGRAPHIC_COLUMNS:
        logger.info(f"Attached {col}: {int(result[col].notna().sum())} of {len(result)} jurisdictions, "
                    f"total {int(result[col].sum()):,}")
    return result

import logging
import os
import time

import pandas as pd
import requests
from census import Census
from census.core import CensusException

from rhna_utils.config import (
    CA_STATE_FIPS,
    CENSUS_DEFINITIONS,
    get_bay_area_county_geoids,
)

# Census suppression / jam values that must not be read as counts
SUPPRESSION_CODES = [-666666666, -999999999, -888888888, -555555555, -222222222]

GEO_ID_WIDTH = {
    "place": 5,
    "county": 3,
}


class CensusApiException(Exception):
    """Exception raised when Census API calls fail."""
    pass


class CensusFetcher:
    """
    Fetch population and housing-unit counts for places and counties and cache them.

    Uses the census python package (https://pypi.org/project/census/). Each
    (dataset, year, geography) pull is cached as one CSV in the cache folder;
    delete the file to force a re-download.
    """

    def __init__(self, api_key=None, cache_folder=None, census=None):
        """
        Instantiate the census object. A pre-built client may be passed in
        (anything exposing .acs5/.acs1 with a get(fields, geo, year=) method).
        """
        if census is None:
            if not api_key:
                raise CensusApiException("A Census API key is required to fetch demographic data")
            census = Census(api_key)
        self.census = census
        self.cache_folder = cache_folder

        # Rate limiting
        self.last_request_time = 0
        self.min_request_interval = 0.1  # 100ms between requests

        logging.debug("census object instantiated")

    def _rate_limit(self):
        """Enforce rate limiting between requests."""
        elapsed = time.time() - self.last_request_time
        if elapsed < self.min_request_interval:
            time.sleep(self.min_request_interval - elapsed)
        self.last_request_time = time.time()

    def _cache_file(self, dataset, year, geo):
        if not self.cache_folder:
            return None
        return os.path.join(self.cache_folder, f"{dataset}_{year}_{geo}_counts.csv")

    def get_counts(self, geo: str, year: int, dataset: str = "acs5", state_fips: str = CA_STATE_FIPS) -> pd.DataFrame:
        """
        Population and housing-unit counts for every place or county in a state.

        Args:
            geo: 'place' or 'county'
            year: estimate year (e.g. 2015)
            dataset: census dataset attribute on the client ('acs5', 'acs1')
            state_fips: two-digit state FIPS code

        Returns:
            pd.DataFrame: geoid, name, population, existing_units. Suppressed
            or missing values are <NA>.
        """
        if geo not in GEO_ID_WIDTH:
            raise ValueError(f"Unsupported geography: {geo}")

        table_cache_file = self._cache_file(dataset, year, geo)
        if table_cache_file and os.path.exists(table_cache_file):
            logging.info(f"Reading {table_cache_file}")
            df = pd.read_csv(table_cache_file, dtype={"geoid": str, "name": str})
            for col in CENSUS_DEFINITIONS:
                df[col] = df[col].astype("Int64")
            return df

        variables = [variable for _, variable in CENSUS_DEFINITIONS.values()]
        geo_dict = {"for": f"{geo}:*", "in": f"state:{state_fips}"}
        logging.info(f"Fetching {dataset} {year} {variables} for {geo_dict}")

        self._rate_limit()
        try:
            api = getattr(self.census, dataset)
            records = api.get(["NAME"] + variables, geo_dict, year=year)
        except AttributeError as e:
            raise CensusApiException(f"Unsupported dataset: {dataset}") from e
        except (CensusException, requests.RequestException, ValueError) as e:
            raise CensusApiException(f"Census API request failed for {dataset} {year} {geo}: {e}") from e

        df = self._parse_records(records, geo, state_fips)
        logging.info(f"Parsed {len(df)} {geo} rows")

        if table_cache_file:
            os.makedirs(os.path.dirname(table_cache_file), exist_ok=True)
            df.to_csv(table_cache_file, index=False)
            logging.info(f"Wrote {table_cache_file}")
        return df

    def _parse_records(self, records, geo, state_fips):
        """Census API records -> geoid, name, population, existing_units."""
        if not records:
            raise CensusApiException(f"Census API returned no {geo} records")

        df = pd.DataFrame.from_records(records)
        missing = [c for c in ["NAME", geo] if c not in df.columns]
        if missing:
            raise CensusApiException(f"Census response is missing columns {missing}: {list(df.columns)}")

        state = df["state"].astype(str).str.zfill(2) if "state" in df.columns else state_fips
        out = pd.DataFrame({
            "geoid": state + df[geo].astype(str).str.zfill(GEO_ID_WIDTH[geo]),
            "name": df["NAME"].astype(str),
        })
        for col, (_, variable) in CENSUS_DEFINITIONS.items():
            values = pd.to_numeric(df[variable], errors="coerce")
            values = values.mask(values.isin(SUPPRESSION_CODES) | (values < 0))
            out[col] = values.round().astype("Int64")
        return out

    def get_place_and_county_counts(self, year, dataset="acs5"):
        """Place-level counts statewide and county-level counts for the Bay Area."""
        place_counts = self.get_counts("place", year, dataset)
        county_counts = self.get_counts("county", year, dataset)
        county_counts = county_counts[county_counts["geoid"].isin(get_bay_area_county_geoids())]
        return place_counts, county_counts.reset_index(drop=True)

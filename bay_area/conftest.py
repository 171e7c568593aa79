"""
Shared pytest fixtures: a two-county toy Bay Area in California Albers metres.

    Alameda       box(0, 0, 10000, 10000)   Oakland + Berkeley + unincorporated remainder
    Contra Costa  box(10000, 0, 20000, 10000)   fully covered by Richmond
"""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from unified_rhna_config import UnifiedRHNAConfig

CRS = "EPSG:3310"


class FakeCensusDataset:
    """Mimics census.Census().acs5: get(fields, geo, year=) -> list of dict records."""

    def __init__(self, records):
        self.records = records
        self.calls = []

    def get(self, fields, geo, year=None):
        self.calls.append((tuple(fields), dict(geo), year))
        level = geo["for"].split(":")[0]
        return [dict(r) for r in self.records[level]]


class FakeCensus:
    def __init__(self, records):
        self.acs5 = FakeCensusDataset(records)


CENSUS_RECORDS = {
    "place": [
        {"NAME": "Oakland city, California", "B01003_001E": "400000", "B25001_001E": "160000",
         "state": "06", "place": "53000"},
        {"NAME": "Berkeley city, California", "B01003_001E": "100000", "B25001_001E": "40000",
         "state": "06", "place": "06000"},
        {"NAME": "Richmond city, California", "B01003_001E": "100000", "B25001_001E": "38000",
         "state": "06", "place": "60620"},
    ],
    "county": [
        {"NAME": "Alameda County, California", "B01003_001E": "520000", "B25001_001E": "210000",
         "state": "06", "county": "001"},
        {"NAME": "Contra Costa County, California", "B01003_001E": "100000", "B25001_001E": "38000",
         "state": "06", "county": "013"},
        {"NAME": "Fresno County, California", "B01003_001E": "900000", "B25001_001E": "300000",
         "state": "06", "county": "019"},
    ],
}


@pytest.fixture
def config(tmp_path):
    return UnifiedRHNAConfig(base_dir=tmp_path)


@pytest.fixture
def counties():
    return gpd.GeoDataFrame(
        {
            "county": ["Alameda", "Contra Costa"],
            "countyfp": ["001", "013"],
            "geoid": ["06001", "06013"],
        },
        geometry=[box(0, 0, 10000, 10000), box(10000, 0, 20000, 10000)],
        crs=CRS,
    )


@pytest.fixture
def places():
    return gpd.GeoDataFrame(
        {
            "name": ["Oakland", "Berkeley", "Richmond", "Castro Valley"],
            "geoid": ["0653000", "0606000", "0660620", "0611964"],
            "classfp": ["C1", "C1", "C1", "U1"],
        },
        geometry=[
            box(0, 0, 4000, 4000),
            box(4000, 0, 6000, 4000),
            box(10000, 0, 20000, 10000),
            box(6000, 6000, 8000, 8000),
        ],
        crs=CRS,
    )


@pytest.fixture
def targets():
    return pd.DataFrame({
        "county": ["Alameda", "Alameda", "Alameda", "Contra Costa"],
        "jurisdiction": ["Oakland", "Berkeley", "Alameda Unincorporated", "Richmond"],
        "vlow": [20, 10, 4, 8],
        "low": [20, 10, 4, 8],
        "mod": [20, 10, 4, 8],
        "amod": [40, 10, 4, 16],
        "total": [100, 40, 16, 40],
    })


@pytest.fixture
def permits():
    return pd.DataFrame({
        "jurisdiction": ["Oakland", "Oakland", "Berkeley", "Richmond", "Oakland"],
        "county": ["Alameda", "Alameda", "Alameda", "Contra Costa", "Alameda"],
        "countyfp": ["001", "001", "001", "013", "001"],
        "year": [2015, 2016, 2017, 2016, 2019],
        "category": ["5-plus-unit", "single-family", "5-plus-unit", "second-unit", "5-plus-unit"],
        "is_tpa": [True, False, True, False, True],
        "vlow": [5, 0, 2, 1, 50],
        "low": [5, 0, 2, 1, 50],
        "mod": [0, 0, 2, 0, 50],
        "amod": [20, 5, 4, 2, 50],
        "total": [30, 5, 10, 4, 200],
    })


@pytest.fixture
def fake_census():
    return FakeCensus(CENSUS_RECORDS)

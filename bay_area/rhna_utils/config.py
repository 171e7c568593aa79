import collections

# ----------------------------------------
# Geography

BAY_AREA_COUNTY_FIPS  = collections.OrderedDict([
    ("Alameda"      ,"001"),
    ("Contra Costa" ,"013"),
    ("Marin"        ,"041"),
    ("Napa"         ,"055"),
    ("San Francisco","075"),
    ("San Mateo"    ,"081"),
    ("Santa Clara"  ,"085"),
    ("Solano"       ,"095"),
    ("Sonoma"       ,"097"),
])

CA_STATE_FIPS = "06"

# Literal used by the RHNA and permit tables for county land outside any city
UNINCORPORATED_MARKER = "Unincorporated"
UNINCORPORATED_FMT = "{} Unincorporated"

# ----------------------------------------
# Income levels
# Canonical keys in report order; 'total' is the synthetic sum of the four levels
INCOME_LEVELS = ("vlow", "low", "mod", "amod")
TOTAL_LEVEL = "total"
AFFORDABLE_LEVELS = ("vlow", "low", "mod")

INCOME_LEVEL_LABELS = collections.OrderedDict([
    ("vlow" , "Very Low"),
    ("low"  , "Low"),
    ("mod"  , "Moderate"),
    ("amod" , "Above Moderate"),
    ("total", "Total"),
])

# ----------------------------------------
# Permit categories (ABAG permit table 'hcategory' codes)
PERMIT_CATEGORIES = collections.OrderedDict([
    ("SF"    , "single-family"),
    ("SU"    , "second-unit"),
    ("MH"    , "mobile-home"),
    ("2 to 4", "2-to-4-unit"),
    ("5+"    , "5-plus-unit"),
])
OTHER_PERMIT_CATEGORY = "other"

# ----------------------------------------
# Census variables: name -> (dataset, variable)
CENSUS_DEFINITIONS = collections.OrderedDict([
    ("population"    , ("acs5", "B01003_001E")),
    ("existing_units", ("acs5", "B25001_001E")),
])


def get_bay_area_county_codes():
    """Return list of Bay Area county FIPS codes (3-digit, zero-padded)."""
    return list(BAY_AREA_COUNTY_FIPS.values())

def get_bay_area_county_geoids():
    """Return list of Bay Area county GEOIDs (5-digit: state + county)."""
    return [CA_STATE_FIPS + county_fips for county_fips in BAY_AREA_COUNTY_FIPS.values()]

def get_county_name_mapping():
    """Return mapping of county FIPS codes to county names."""
    return dict(zip(BAY_AREA_COUNTY_FIPS.values(), BAY_AREA_COUNTY_FIPS.keys()))

def unincorporated_name(county):
    return UNINCORPORATED_FMT.format(county)

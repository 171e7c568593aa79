import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from rhna_utils.geog_utils import (
    INCORPORATED,
    UNINCORPORATED,
    area_of,
    build_match_report,
    check_partition,
    clip_places,
    filter_places,
    resolve_jurisdictions,
    unresolved_targets,
)
from rhna_utils.issues import RESOLUTION_GAP, IssueLog


def test_resolve_jurisdictions(places, counties, targets, config):
    issues = IssueLog()
    jurisdictions = resolve_jurisdictions(places, counties, targets, config, issues)

    assert jurisdictions["jurisdiction"].tolist() == ["Oakland", "Berkeley", "Alameda Unincorporated", "Richmond"]
    assert jurisdictions["kind"].tolist() == [INCORPORATED, INCORPORATED, UNINCORPORATED, INCORPORATED]
    assert jurisdictions.loc[2, "geoid"] == "06001"
    # Alameda is 100 km2, Oakland 16 km2 and Berkeley 8 km2
    assert area_of(jurisdictions.geometry).iloc[2] == pytest.approx(76_000_000)
    assert len(issues) == 0


def test_fully_incorporated_county_has_no_remainder(places, counties, targets, config):
    jurisdictions = resolve_jurisdictions(places, counties, targets, config, IssueLog())
    assert "Contra Costa Unincorporated" not in set(jurisdictions["jurisdiction"])


def test_jurisdictions_partition_each_county(places, counties, targets, config):
    jurisdictions = resolve_jurisdictions(places, counties, targets, config, IssueLog())
    partition = check_partition(jurisdictions, counties)

    assert partition["ok"].all()
    assert partition["covered_area"].tolist() == pytest.approx(partition["county_area"].tolist())


def test_check_partition_flags_gap(counties):
    jurisdictions = gpd.GeoDataFrame(
        {"jurisdiction": ["A", "B"]},
        geometry=[box(0, 0, 5000, 10000), box(10000, 0, 20000, 10000)],
        crs=counties.crs,
    )
    partition = check_partition(jurisdictions, counties).set_index("county")
    assert not partition.at["Alameda", "ok"]
    assert partition.at["Contra Costa", "ok"]


def test_clip_places_reprojects_and_drops_outside(places, counties):
    outside = gpd.GeoDataFrame(
        {"name": ["Reno"], "geoid": ["3260600"], "classfp": ["C1"]},
        geometry=[box(50000, 50000, 60000, 60000)],
        crs=places.crs,
    )
    mixed = pd.concat([places, outside], ignore_index=True).to_crs("EPSG:4326")
    clipped = clip_places(mixed, counties)

    assert clipped.crs == counties.crs
    assert "Reno" not in set(clipped["name"])
    assert len(clipped) == len(places)


def test_filter_places_drops_cdps_and_unlisted(places, counties, targets, config):
    kept = filter_places(places, targets, counties, config, IssueLog())
    assert sorted(kept["name"]) == ["Berkeley", "Oakland", "Richmond"]
    assert kept.set_index("name").at["Richmond", "county"] == "Contra Costa"


def test_filter_places_disambiguates_duplicate_names_by_county(places, counties, targets, config):
    # a second 'Richmond' lying in Alameda is not the Contra Costa jurisdiction
    twin = gpd.GeoDataFrame(
        {"name": ["Richmond"], "geoid": ["0699999"], "classfp": ["C1"]},
        geometry=[box(8000, 8000, 9000, 9000)],
        crs=places.crs,
    )
    kept = filter_places(pd.concat([places, twin], ignore_index=True), targets, counties, config, IssueLog())
    assert kept.loc[kept["name"] == "Richmond", "geoid"].tolist() == ["0660620"]


def test_filter_places_reports_unresolvable_duplicates(places, counties, targets, config):
    twin = gpd.GeoDataFrame(
        {"name": ["Oakland"], "geoid": ["0699999"], "classfp": ["C1"]},
        geometry=[box(8000, 8000, 9000, 9000)],
        crs=places.crs,
    )
    issues = IssueLog()
    kept = filter_places(pd.concat([places, twin], ignore_index=True), targets, counties, config, issues)

    assert "Oakland" not in set(kept["name"])
    assert issues.jurisdictions(RESOLUTION_GAP) == ["Oakland"]


def test_excluded_geoids_resolve_duplicates(places, counties, targets, config):
    twin = gpd.GeoDataFrame(
        {"name": ["Oakland"], "geoid": ["0699999"], "classfp": ["C1"]},
        geometry=[box(8000, 8000, 9000, 9000)],
        crs=places.crs,
    )
    config.EXCLUDED_PLACE_GEOIDS = ["0699999"]
    issues = IssueLog()
    kept = filter_places(pd.concat([places, twin], ignore_index=True), targets, counties, config, issues)

    assert kept.loc[kept["name"] == "Oakland", "geoid"].tolist() == ["0653000"]
    assert len(issues) == 0


def test_target_without_geometry_is_a_gap(places, counties, targets, config):
    extra = pd.concat([targets, pd.DataFrame([{
        "county": "Alameda", "jurisdiction": "Atlantis",
        "vlow": 1, "low": 1, "mod": 1, "amod": 1, "total": 4,
    }])], ignore_index=True)
    issues = IssueLog()
    jurisdictions = resolve_jurisdictions(places, counties, extra, config, issues)

    assert "Atlantis" not in set(jurisdictions["jurisdiction"])
    assert issues.gaps[0].jurisdiction == "Atlantis"


def test_match_report(targets, permits, places, counties, config):
    jurisdictions = resolve_jurisdictions(places, counties, targets, config, IssueLog())
    permits = pd.concat([permits, permits.head(1).assign(jurisdiction="Emeryville")], ignore_index=True)
    report = build_match_report(targets, permits, jurisdictions).set_index("jurisdiction")

    assert report.at["Oakland", "status"] == "matched"
    assert report.at["Alameda Unincorporated", "status"] == "missing: permits"
    assert report.at["Emeryville", "status"] == "missing: targets, geometry"
    assert bool(report.at["Emeryville", "in_permits"])


def test_unresolved_targets(places, counties, targets, config):
    jurisdictions = resolve_jurisdictions(places[places["name"] != "Berkeley"], counties, targets, config, IssueLog())
    assert unresolved_targets(targets, jurisdictions) == {"Alameda": ["Berkeley"]}


def test_sliver_remainder_passes_partition_at_remainder_tolerance(counties, config):
    # Oakland covers 99.995% of Alameda; the 0.005% remainder is dropped as a sliver
    places = gpd.GeoDataFrame(
        {"name": ["Oakland", "Richmond"], "geoid": ["0653000", "0660620"], "classfp": ["C1", "C1"]},
        geometry=[box(0, 0, 10000, 9999.5), box(10000, 0, 20000, 10000)],
        crs=counties.crs,
    )
    targets = pd.DataFrame({
        "county": ["Alameda", "Contra Costa"], "jurisdiction": ["Oakland", "Richmond"],
        "vlow": [1, 1], "low": [1, 1], "mod": [1, 1], "amod": [1, 1], "total": [4, 4],
    })
    jurisdictions = resolve_jurisdictions(places, counties, targets, config, IssueLog())
    assert jurisdictions["jurisdiction"].tolist() == ["Oakland", "Richmond"]
    assert not check_partition(jurisdictions, counties)["ok"].all()

    partition = check_partition(jurisdictions, counties, tolerance=config.MIN_REMAINDER_AREA_FRACTION)
    assert partition["ok"].all()

import logging

import geopandas as gpd
import matplotlib
import pandas as pd
import pytest
import yaml

matplotlib.use("Agg")

from rhna_pipeline import RHNAPipeline, main  # noqa: E402
from rhna_utils.census_fetcher import CensusFetcher  # noqa: E402
from rhna_utils.issues import LoadError  # noqa: E402


def write_inputs(config, targets, permits, places, counties):
    """Write the fixture tables in their raw source layout and point the config at them."""
    data_dir = config.DATA_DIR
    data_dir.mkdir(parents=True, exist_ok=True)

    raw_targets = targets.rename(columns={v: k for k, v in config.TARGET_COLUMNS.items()})
    raw_targets["Jurisdiction"] = raw_targets["Jurisdiction"].replace("Alameda Unincorporated", "Unincorporated")
    raw_targets.to_csv(data_dir / "targets.csv", index=False)

    raw_permits = permits.drop(columns="county").rename(columns={v: k for k, v in config.PERMIT_COLUMNS.items()})
    raw_permits["tpa"] = raw_permits["tpa"].map({True: "1", False: "0"})
    raw_permits.to_csv(data_dir / "permits.csv", index=False)

    raw_places = places.rename(columns={"name": "NAME", "geoid": "GEOID", "classfp": "CLASSFP"})
    raw_places.to_file(data_dir / "places.gpkg", driver="GPKG", engine="pyogrio")
    raw_counties = counties.rename(columns={"county": "NAME", "countyfp": "COUNTYFP", "geoid": "GEOID"})
    raw_counties.to_file(data_dir / "counties.gpkg", driver="GPKG", engine="pyogrio")

    config.INPUT_FILES.update({
        'targets': data_dir / "targets.csv",
        'permits': data_dir / "permits.csv",
        'places': data_dir / "places.gpkg",
        'counties': data_dir / "counties.gpkg",
    })
    return config


@pytest.fixture
def pipeline(config, targets, permits, places, counties, fake_census):
    write_inputs(config, targets, permits, places, counties)
    return RHNAPipeline(config, census_fetcher=CensusFetcher(census=fake_census))


def test_pipeline_end_to_end(pipeline):
    result = pipeline.run()
    comparison = result.comparison

    assert len(comparison) == 4 * 5
    assert len(result.issues) == 0
    assert result.partition["ok"].all()

    jurisdictions = result.jurisdictions.set_index("jurisdiction")
    assert jurisdictions.at["Alameda Unincorporated", "population"] == 20000
    assert jurisdictions.at["Alameda Unincorporated", "existing_units"] == 10000

    oakland = comparison[(comparison["jurisdiction"] == "Oakland") & (comparison["income_level"] == "total")].iloc[0]
    assert oakland["target_units_scaled"] == 37.5
    assert oakland["permitted_units"] == 35
    assert oakland["existing_units"] == 160000
    assert oakland["progress"] == pytest.approx(35 / 37.5)

    assert set(result.summaries) == {'county_summary', 'income_summary', 'region_summary',
                                     'tpa_proportions', 'category_counts'}
    assert (result.match_report["status"] == "matched").sum() == 3


def test_pipeline_is_idempotent(pipeline):
    first = pipeline.run()
    second = pipeline.run()
    pd.testing.assert_frame_equal(first.comparison, second.comparison)
    pd.testing.assert_frame_equal(first.summaries['county_summary'], second.summaries['county_summary'])


def test_write_tables(pipeline, config):
    result = pipeline.run()
    outputs = pipeline.write_tables(result)

    for path in outputs.values():
        assert path.exists()
    written = pd.read_csv(outputs['comparison'])
    assert len(written) == len(result.comparison)
    geo = gpd.read_file(outputs['jurisdictions'], engine="pyogrio")
    assert sorted(geo["jurisdiction"]) == sorted(result.jurisdictions["jurisdiction"])


def test_write_charts(pipeline, config):
    charts = pipeline.write_charts(pipeline.run())
    for path in charts.values():
        assert path.exists()


def test_offline_without_cache_leaves_demographics_missing(config, targets, permits, places, counties):
    write_inputs(config, targets, permits, places, counties)
    result = RHNAPipeline(config, offline_mode=True).run()

    assert result.comparison["existing_units"].isna().all()
    assert result.comparison["growth_rate"].isna().all()
    assert result.comparison["permitted_units"].sum() > 0
    assert "(all)" in result.issues.jurisdictions()


def test_missing_input_aborts(config):
    with pytest.raises(LoadError):
        RHNAPipeline(config).run()


def test_main_writes_outputs(tmp_path, config, targets, permits, places, counties, monkeypatch):
    write_inputs(config, targets, permits, places, counties)
    settings = {
        'base_dir': str(tmp_path),
        'input_files': {key: str(path) for key, path in config.INPUT_FILES.items()},
    }
    settings_path = tmp_path / "settings.yaml"
    settings_path.write_text(yaml.safe_dump(settings))
    monkeypatch.delenv("CENSUS_API_KEY", raising=False)

    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        status = main(["--config", str(settings_path), "--output_dir", str(tmp_path / "out"), "--offline"])
    finally:
        for handler in root.handlers[len(handlers):]:
            handler.close()
            root.removeHandler(handler)

    assert status == 0
    assert (tmp_path / "out" / "rhna_comparison.csv").exists()
    assert (tmp_path / "out" / "rhna_pipeline.log").exists()


def test_main_returns_error_on_missing_inputs(tmp_path):
    settings_path = tmp_path / "settings.yaml"
    settings_path.write_text(yaml.safe_dump({'base_dir': str(tmp_path)}))

    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        status = main(["--config", str(settings_path), "--offline"])
    finally:
        for handler in root.handlers[len(handlers):]:
            handler.close()
            root.removeHandler(handler)
    assert status == 1


def test_download_boundaries_only_fetches_missing_files(config, monkeypatch):
    calls = []

    def fake_download(layer, year, dest):
        calls.append((layer, year))
        return dest / f"tl_{year}_{layer}.shp"

    monkeypatch.setattr("rhna_pipeline.download_tiger_shapefile", fake_download)
    config.INPUT_FILES['counties'].parent.mkdir(parents=True, exist_ok=True)
    config.INPUT_FILES['counties'].write_text("")

    RHNAPipeline(config).download_boundaries()

    assert calls == [("place", 2015)]
    assert config.INPUT_FILES['places'].name == "tl_2015_place.shp"


def test_city_without_geometry_leaves_remainder_missing(config, targets, permits, places, counties, fake_census):
    write_inputs(config, targets, permits, places[places["name"] != "Berkeley"], counties)
    result = RHNAPipeline(config, census_fetcher=CensusFetcher(census=fake_census)).run()

    jurisdictions = result.jurisdictions.set_index("jurisdiction")
    assert pd.isna(jurisdictions.at["Alameda Unincorporated", "population"])
    assert pd.isna(jurisdictions.at["Alameda Unincorporated", "existing_units"])
    assert result.issues.jurisdictions() == ["Berkeley", "Alameda Unincorporated"]

#!/usr/bin/env python3
"""
RHNA Pipeline - compares 2015-2023 RHNA allocations with permits issued in the
observed years for every Bay Area jurisdiction.

Stages: load sources -> resolve jurisdictions -> fetch census counts ->
attach demographics -> build comparison -> summaries. The pipeline runs once
over a fixed snapshot and hands its tables to the report; write_tables() saves
them to the output directory.

Usage:
    python rhna_pipeline.py [--config settings.yaml] [--output_dir DIR] [--offline]
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from rhna_utils.census_fetcher import CensusApiException, CensusFetcher
from rhna_utils.demographics import DEMOGRAPHIC_COLUMNS, attach_demographics
from rhna_utils.downloads import DownloadError, download_tiger_shapefile
from rhna_utils.geog_utils import (
    build_match_report,
    check_partition,
    resolve_jurisdictions,
    unresolved_targets,
)
from rhna_utils.issues import IssueLog, LoadError
from rhna_utils.loaders import load_counties, load_permits, load_places, load_targets
from rhna_utils.metrics import build_comparison
from rhna_utils.summaries import (
    category_counts,
    summarize_by_county,
    summarize_by_income_level,
    summarize_region,
    tpa_proportions,
)
from unified_rhna_config import UnifiedRHNAConfig

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything the report needs from one run."""
    comparison: pd.DataFrame
    jurisdictions: object
    summaries: dict
    match_report: pd.DataFrame
    partition: pd.DataFrame
    issues: IssueLog = field(default_factory=IssueLog)


class RHNAPipeline:
    """RHNA progress comparison over a fixed data snapshot"""

    def __init__(self, config=None, census_fetcher=None, offline_mode=False):
        self.config = config or UnifiedRHNAConfig()
        self.census_fetcher = census_fetcher
        self.offline_mode = offline_mode

    def load_sources(self):
        """Read the four raw inputs; any LoadError aborts the run."""
        files = self.config.INPUT_FILES
        targets = load_targets(files['targets'], self.config)
        permits = load_permits(files['permits'], self.config)
        places = load_places(files['places'], self.config)
        counties = load_counties(files['counties'], self.config)
        return targets, permits, places, counties

    def download_boundaries(self):
        """Fetch the TIGER place and county shapefiles named in INPUT_FILES when they are missing."""
        for key, layer in (('places', 'place'), ('counties', 'county')):
            path = self.config.INPUT_FILES[key]
            if path.exists():
                continue
            self.config.INPUT_FILES[key] = download_tiger_shapefile(layer, self.config.TIGER_YEAR, path.parent)

    def get_census_fetcher(self):
        if self.census_fetcher is None:
            self.census_fetcher = CensusFetcher(
                api_key=self.config.get_census_api_key(),
                cache_folder=str(self.config.CENSUS_CACHE_DIR),
            )
        return self.census_fetcher

    def fetch_counts(self, issues):
        """
        Place and county counts from the census fetcher. In offline mode, or
        when the API is unavailable, every jurisdiction is left without
        demographics and the gap is recorded.
        """
        empty = pd.DataFrame({"geoid": pd.Series(dtype=str),
                              **{col: pd.Series(dtype="Int64") for col in DEMOGRAPHIC_COLUMNS}})
        if self.offline_mode and self.census_fetcher is None:
            logger.warning("Offline mode: reading census counts from cache only")
            fetcher = CensusFetcher(census=_OfflineCensus(), cache_folder=str(self.config.CENSUS_CACHE_DIR))
        else:
            try:
                fetcher = self.get_census_fetcher()
            except CensusApiException as e:
                logger.error(f"{e}; set {self.config.CENSUS_API_KEY_ENV} or {self.config.CENSUS_API_KEY_FILE}")
                issues.gap("(all)", f"census counts unavailable: {e}")
                return empty, empty

        try:
            return fetcher.get_place_and_county_counts(self.config.CENSUS_YEAR, self.config.CENSUS_DATASET)
        except CensusApiException as e:
            logger.error(f"Census counts unavailable: {e}")
            issues.gap("(all)", f"census counts unavailable: {e}")
            return empty, empty

    def run(self):
        logger.info("=" * 60)
        logger.info("RHNA PROGRESS PIPELINE")
        logger.info(f"Observation years {list(self.config.OBSERVATION_YEARS)} of a "
                    f"{self.config.HORIZON_YEARS}-year horizon")
        logger.info("=" * 60)
        issues = IssueLog()

        targets, permits, places, counties = self.load_sources()

        jurisdictions = resolve_jurisdictions(places, counties, targets, self.config, issues)
        partition = check_partition(jurisdictions, counties, tolerance=self.config.MIN_REMAINDER_AREA_FRACTION)
        for _, row in partition[~partition["ok"]].iterrows():
            logger.warning(f"{row['county']}: jurisdictions do not partition the county "
                           f"(covered {row['covered_area']:,.0f} of {row['county_area']:,.0f} m2, "
                           f"overlap {row['overlap_area']:,.0f} m2)")

        place_counts, county_counts = self.fetch_counts(issues)
        jurisdictions = attach_demographics(jurisdictions, place_counts, county_counts, issues,
                                            unresolved=unresolved_targets(targets, jurisdictions))

        comparison = build_comparison(targets, permits, jurisdictions, self.config, issues)
        match_report = build_match_report(targets, permits, jurisdictions)

        summaries = {
            'county_summary': summarize_by_county(comparison),
            'income_summary': summarize_by_income_level(comparison),
            'region_summary': summarize_region(comparison),
            'tpa_proportions': tpa_proportions(permits, self.config, targets["jurisdiction"]),
            'category_counts': category_counts(permits, self.config),
        }

        logger.info(f"Pipeline finished: {len(issues.gaps)} resolution gap(s), "
                    f"{len(issues.violations)} integrity violation(s)")
        return PipelineResult(
            comparison=comparison,
            jurisdictions=jurisdictions,
            summaries=summaries,
            match_report=match_report,
            partition=partition,
            issues=issues,
        )

    def write_tables(self, result):
        """Write every result table to config.OUTPUT_FILES."""
        self.config.ensure_directories()
        outputs = self.config.OUTPUT_FILES

        result.comparison.to_csv(outputs['comparison'], index=False)
        for key, df in result.summaries.items():
            df.to_csv(outputs[key], index=False)
        result.match_report.to_csv(outputs['match_report'], index=False)
        result.issues.to_frame().to_csv(outputs['issues'], index=False)

        geojson = outputs['jurisdictions']
        if geojson.exists():
            geojson.unlink()
        jurisdictions = result.jurisdictions.to_crs("EPSG:4326")
        for col in DEMOGRAPHIC_COLUMNS:
            if col in jurisdictions.columns:
                jurisdictions[col] = jurisdictions[col].astype("float64")
        jurisdictions.to_file(geojson, driver="GeoJSON", engine="pyogrio")

        for key, path in outputs.items():
            logger.info(f"Wrote {key}: {path}")
        return outputs

    def write_charts(self, result):
        """Strength scatter, county progress bars and progress map as PNGs."""
        import matplotlib
        matplotlib.use("Agg")
        from rhna_utils.charts import county_progress_chart, progress_map, strength_scatter

        self.config.ensure_directories()
        charts = self.config.CHART_FILES
        strength_scatter(result.comparison, self.config, path=charts['strength_scatter'])
        county_progress_chart(result.summaries['county_summary'], self.config, path=charts['county_progress'])
        progress_map(result.jurisdictions, result.comparison, self.config, path=charts['progress_map'])
        return charts


class _OfflineCensus:
    """Census client stand-in for offline runs: every API call fails, so only cached pulls succeed."""

    def __getattr__(self, dataset):
        raise AttributeError(f"offline mode, no cached {dataset} counts")


def setup_logging(log_file):
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s', datefmt='%m/%d/%Y %I:%M:%S %p'))
    logger.addHandler(ch)
    fh = logging.FileHandler(log_file, mode='w')
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s', datefmt='%m/%d/%Y %I:%M:%S %p'))
    logger.addHandler(fh)


def main(argv=None):
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="Bay Area RHNA progress comparison")
    parser.add_argument('--config', help='YAML settings file overriding the defaults')
    parser.add_argument('--output_dir', help='Directory for the result tables')
    parser.add_argument('--offline', action='store_true',
                        help='Use cached census counts only, never call the API')
    parser.add_argument('--download_boundaries', action='store_true',
                        help='Download missing TIGER place and county shapefiles first')
    parser.add_argument('--charts', action='store_true',
                        help='Also write the strength scatter, county progress chart and progress map')
    args = parser.parse_args(argv)

    config = UnifiedRHNAConfig.from_yaml(args.config) if args.config else UnifiedRHNAConfig()
    if args.output_dir:
        config.set_output_dir(Path(args.output_dir))
    config.ensure_directories()

    pd.set_option("display.width", 500)
    pd.set_option("display.float_format", "{:,.3f}".format)
    setup_logging(config.LOG_FILE)

    pipeline = RHNAPipeline(config, offline_mode=args.offline)
    try:
        if args.download_boundaries and not args.offline:
            pipeline.download_boundaries()
        result = pipeline.run()
    except LoadError as e:
        logger.error(f"Unable to load inputs: {e}")
        return 1
    except DownloadError as e:
        logger.error(f"Unable to download boundaries: {e}")
        return 1
    pipeline.write_tables(result)
    if args.charts:
        pipeline.write_charts(result)

    region = result.summaries['region_summary']
    if len(region) and pd.notna(region['progress'].iloc[0]):
        logger.info(f"Bay Area progress: {region['progress'].iloc[0]:.3f} "
                    f"({int(region['permitted_units'].iloc[0]):,} permitted of "
                    f"{region['target_units_scaled'].iloc[0]:,.1f} scaled target units)")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Unified RHNA Progress Configuration
Single source of truth for paths, planning horizon, income-level ordering,
palettes and raw-to-canonical column maps used by the RHNA comparison pipeline.

The configuration object is built once and passed into every stage, so tests
can run the pipeline with alternate horizons, orderings or input sets.
"""

from pathlib import Path
import os

import yaml

from rhna_utils.config import INCOME_LEVELS


class UnifiedRHNAConfig:
    """Single configuration class for the RHNA progress report"""

    def __init__(self, base_dir=None, observation_years=(2015, 2016, 2017), horizon_years=8):
        # Base paths and main directories
        self.BASE_DIR = Path(base_dir) if base_dir else Path(__file__).parent.absolute()
        self.DATA_DIR = self.BASE_DIR / "data"
        self.OUTPUT_DIR = self.BASE_DIR / "output_rhna"
        self.CENSUS_CACHE_DIR = self.DATA_DIR / "census_cache"

        # ============================================================
        # PLANNING HORIZON
        # ============================================================
        # RHNA cycle 5 runs 2015-2023; permits are observed for a subset of its years
        self.HORIZON_START_YEAR = 2015
        self.HORIZON_YEARS = horizon_years
        self.OBSERVATION_YEARS = tuple(observation_years)

        # Census baseline for population / existing housing stock
        self.CENSUS_DATASET = "acs5"
        self.CENSUS_YEAR = 2015
        self.CENSUS_API_KEY_ENV = "CENSUS_API_KEY"
        self.CENSUS_API_KEY_FILE = self.DATA_DIR / "census" / "api-key.txt"
        self.TIGER_YEAR = 2015

        self.INCOME_LEVELS = tuple(INCOME_LEVELS)

        self._setup_file_templates()
        self._setup_file_paths()
        self._setup_column_maps()
        self._setup_palettes()

        # ============================================================
        # RESOLUTION PARAMETERS
        # ============================================================
        # TIGER place GEOIDs dropped before name matching (same-named places
        # that are not the RHNA jurisdiction)
        self.EXCLUDED_PLACE_GEOIDS = []
        # Remainders smaller than this share of the county area are treated as
        # slivers: the county is fully incorporated
        self.MIN_REMAINDER_AREA_FRACTION = 1e-4
        # Tolerance when checking the RHNA 'Total' column against its levels
        self.TARGET_TOTAL_TOLERANCE = 0

    def _setup_file_templates(self):
        """Setup file naming templates"""
        self.FILE_TEMPLATES = {
            # Inputs
            'targets': "rhna_2015_2023.csv",
            'permits': "housing_permits_2015_2017.csv",
            'places': "tl_2015_06_place.shp",
            'counties': "tl_2015_us_county.shp",

            # Outputs
            'comparison': "rhna_comparison.csv",
            'county_summary': "summary_by_county.csv",
            'income_summary': "summary_by_income_level.csv",
            'region_summary': "summary_region.csv",
            'tpa_proportions': "tpa_proportions.csv",
            'category_counts': "permit_category_counts.csv",
            'jurisdictions': "jurisdictions.geojson",
            'match_report': "match_report.csv",
            'issues': "issues.csv",
            'log': "rhna_pipeline.log",

            # Charts
            'strength_scatter': "strength_scatter.png",
            'county_progress': "county_progress.png",
            'progress_map': "progress_map.png",
        }

    def _setup_file_paths(self):
        """Define input and output file paths"""
        self.INPUT_FILES = {
            'targets': self.DATA_DIR / self.FILE_TEMPLATES['targets'],
            'permits': self.DATA_DIR / self.FILE_TEMPLATES['permits'],
            'places': self.DATA_DIR / "shapefiles" / self.FILE_TEMPLATES['places'],
            'counties': self.DATA_DIR / "shapefiles" / self.FILE_TEMPLATES['counties'],
        }

        output_keys = ['comparison', 'county_summary', 'income_summary', 'region_summary',
                       'tpa_proportions', 'category_counts', 'jurisdictions',
                       'match_report', 'issues']
        self.OUTPUT_FILES = {key: self.OUTPUT_DIR / self.FILE_TEMPLATES[key] for key in output_keys}
        self.LOG_FILE = self.OUTPUT_DIR / self.FILE_TEMPLATES['log']
        self.CHART_FILES = {key: self.OUTPUT_DIR / self.FILE_TEMPLATES[key]
                            for key in ['strength_scatter', 'county_progress', 'progress_map']}

    def _setup_column_maps(self):
        """Raw source field -> canonical column"""
        self.TARGET_COLUMNS = {
            'County': 'county',
            'Jurisdiction': 'jurisdiction',
            'Very Low': 'vlow',
            'Low': 'low',
            'Moderate': 'mod',
            'Above Moderate': 'amod',
            'Total': 'total',
        }
        self.PERMIT_COLUMNS = {
            'jurisdictn': 'jurisdiction',
            'county': 'countyfp',
            'permyear': 'year',
            'hcategory': 'category',
            'tpa': 'is_tpa',
            'vlowtot': 'vlow',
            'lowtot': 'low',
            'modtot': 'mod',
            'amodtot': 'amod',
            'totalunit': 'total',
        }
        self.PLACE_COLUMNS = {
            'NAME': 'name',
            'GEOID': 'geoid',
            'CLASSFP': 'classfp',
        }
        self.COUNTY_COLUMNS = {
            'NAME': 'county',
            'COUNTYFP': 'countyfp',
            'GEOID': 'geoid',
        }

    def _setup_palettes(self):
        """Colour palettes for charts and maps"""
        self.PALETTES = {
            'income_levels': {
                'vlow': "#1b9e77",
                'low': "#d95f02",
                'mod': "#7570b3",
                'amod': "#e7298a",
                'total': "#666666",
            },
            'progress_cmap': "RdYlGn",
        }

    def set_output_dir(self, output_dir):
        """Point every output file (and the log) at a new directory."""
        self.OUTPUT_DIR = Path(output_dir)
        output_keys = list(self.OUTPUT_FILES)
        self.OUTPUT_FILES = {key: self.OUTPUT_DIR / self.FILE_TEMPLATES[key] for key in output_keys}
        self.LOG_FILE = self.OUTPUT_DIR / self.FILE_TEMPLATES['log']
        self.CHART_FILES = {key: self.OUTPUT_DIR / self.FILE_TEMPLATES[key]
                            for key in ['strength_scatter', 'county_progress', 'progress_map']}

    @property
    def SCALE_FACTOR(self):
        """Share of the planning horizon covered by the observed permit years."""
        return len(self.OBSERVATION_YEARS) / self.HORIZON_YEARS

    def get_census_api_key(self):
        """Census key from the environment, falling back to the key file."""
        key = os.getenv(self.CENSUS_API_KEY_ENV)
        if key:
            return key.strip()
        if self.CENSUS_API_KEY_FILE.exists():
            with open(self.CENSUS_API_KEY_FILE) as f:
                return f.read().strip()
        return None

    def ensure_directories(self):
        """Create all necessary directories"""
        self.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        self.CENSUS_CACHE_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_yaml(cls, yaml_path):
        """
        Build a config and override it from a YAML settings file.

        Recognised keys (all optional):
          base_dir, observation_years, horizon_years, census_year, census_dataset,
          income_levels, excluded_place_geoids, min_remainder_area_fraction,
          target_total_tolerance, output_dir, input_files (mapping), palettes (mapping)
        """
        with open(yaml_path) as f:
            settings = yaml.safe_load(f) or {}

        config = cls(
            base_dir=settings.get('base_dir'),
            observation_years=settings.get('observation_years', (2015, 2016, 2017)),
            horizon_years=settings.get('horizon_years', 8),
        )
        if 'census_year' in settings:
            config.CENSUS_YEAR = int(settings['census_year'])
        if 'census_dataset' in settings:
            config.CENSUS_DATASET = settings['census_dataset']
        if 'income_levels' in settings:
            config.INCOME_LEVELS = tuple(settings['income_levels'])
        if 'excluded_place_geoids' in settings:
            config.EXCLUDED_PLACE_GEOIDS = [str(g) for g in settings['excluded_place_geoids']]
        if 'min_remainder_area_fraction' in settings:
            config.MIN_REMAINDER_AREA_FRACTION = float(settings['min_remainder_area_fraction'])
        if 'target_total_tolerance' in settings:
            config.TARGET_TOTAL_TOLERANCE = float(settings['target_total_tolerance'])
        if 'output_dir' in settings:
            config.set_output_dir(settings['output_dir'])
        for key, path in (settings.get('input_files') or {}).items():
            config.INPUT_FILES[key] = Path(path)
        for key, palette in (settings.get('palettes') or {}).items():
            config.PALETTES[key] = palette
        return config

"""
Download TIGER/Line boundary shapefiles from the Census Bureau.
"""

import logging
import os
import zipfile
from pathlib import Path

import requests

logger = logging.getLogger(__name__)

TIGER_URL = "https://www2.census.gov/geo/tiger/TIGER{year}/{layer_dir}/{name}.zip"

# layer -> (directory on the TIGER server, file name template)
TIGER_LAYERS = {
    'place': ("PLACE", "tl_{year}_{state}_place"),
    'county': ("COUNTY", "tl_{year}_us_county"),
}


class DownloadError(Exception):
    """Raised when a boundary file cannot be downloaded or unpacked."""
    pass


def tiger_url(layer, year, state_fips="06"):
    """Download URL and shapefile stem for a TIGER/Line layer."""
    if layer not in TIGER_LAYERS:
        raise ValueError(f"Unsupported TIGER layer: {layer} (expected one of {list(TIGER_LAYERS)})")
    layer_dir, template = TIGER_LAYERS[layer]
    name = template.format(year=year, state=state_fips)
    return TIGER_URL.format(year=year, layer_dir=layer_dir, name=name), name


def download_tiger_shapefile(layer, year, dest, state_fips="06", session=None, timeout=300, overwrite=False):
    """
    Download and unpack a TIGER/Line shapefile.

    Args:
        layer: 'place' or 'county'
        year: TIGER vintage, e.g. 2015
        dest: target directory
        state_fips: state for state-level layers (places)
        session: optional requests.Session
        overwrite: re-download even when the .shp already exists

    Returns:
        Path to the extracted .shp file.
    """
    url, name = tiger_url(layer, year, state_fips)
    dest = Path(dest)
    shapefile_path = dest / f"{name}.shp"
    if shapefile_path.exists() and not overwrite:
        logger.info(f"Using existing {shapefile_path}")
        return shapefile_path

    os.makedirs(dest, exist_ok=True)
    zip_path = dest / f"{name}.zip"
    http = session or requests

    logger.info(f"Downloading {url}")
    try:
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise DownloadError(f"Download failed for {url}: {e}") from e

    with open(zip_path, 'wb') as f:
        f.write(response.content)
    logger.info(f"Downloaded {zip_path} ({len(response.content) / 1024 / 1024:.1f} MB)")

    try:
        with zipfile.ZipFile(zip_path, 'r') as zip_ref:
            zip_ref.extractall(dest)
    except zipfile.BadZipFile as e:
        raise DownloadError(f"Zip extraction failed for {zip_path}: {e}") from e
    finally:
        if zip_path.exists():
            zip_path.unlink()

    if not shapefile_path.exists():
        raise DownloadError(f"{shapefile_path.name} not found in {url}")
    logger.info(f"Shapefile ready: {shapefile_path}")
    return shapefile_path

#!/usr/bin/env python
"""
Script to run Inverse Distance Weighting of yearly precipitation for Germany.

Station totals are downloaded from the NOAA Climate Data Online API (or read
from a cached CSV), interpolated for a range of inverse distance powers, and
the power with the smallest leave-one-out cross-validation error is used for
the final map. Requires python >= 3.11.

The NOAA token is read from the configuration or the NOAA_TOKEN environment
variable.
"""

from datetime import datetime
import os

# argument parser
import argparse
import yaml

# data handling tools
import numpy as np
import polars as pl
import xarray as xr

import matplotlib

matplotlib.use("Agg")

from station_gridding import __version__
from station_gridding.analysis import precipitation_idw
from station_gridding.io import get_recurse
from station_gridding.utils import init_logging

# Debugging
import logging

parser = argparse.ArgumentParser()
parser.add_argument(
    "-config",
    dest="config",
    required=False,
    default=os.path.join(os.path.dirname(__file__), "config_idw.yaml"),
    help="Path to yaml file containing configuration settings",
    type=str,
)


def _parse_args(
    parser,
) -> dict:
    args = parser.parse_args()
    with open(args.config, "r") as io:
        config: dict = yaml.safe_load(io)

    return config


def main():  # noqa: D103
    config = _parse_args(parser)

    config.setdefault("summary", {})
    config["summary"]["start"] = str(datetime.today())
    config["summary"]["station_gridding"] = __version__
    config["summary"]["numpy"] = np.__version__
    config["summary"]["polars"] = pl.__version__
    config["summary"]["xarray"] = xr.__version__

    log_file: str | None = get_recurse(
        config, "setup", "log_file", default=None
    )
    init_logging(
        log_file, get_recurse(config, "setup", "log_level", default="info")
    )
    logging.info("Loaded configuration")

    results = precipitation_idw(config)
    # Secrets are not written to the output directory
    config.get("noaa", {}).pop("token", None)

    config["summary"]["end"] = str(datetime.today())
    config["summary"]["n_stations"] = results["n_stations"]
    config["summary"]["best_power"] = results["best_power"]
    config["summary"]["cv"] = results["cv"]
    config["summary"]["figures"] = results["figures"]

    output_directory = os.path.dirname(results["grid"])
    config_copy = os.path.join(output_directory, "config.yaml")
    logging.info(f"Writing configuration and summary to {config_copy}")
    with open(config_copy, "w") as io:
        yaml.safe_dump(config, io)


if __name__ == "__main__":
    main()

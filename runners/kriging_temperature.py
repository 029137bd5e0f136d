#!/usr/bin/env python
"""
Script to run Kriging of station temperature for Catalunya.

Variogram models are fitted to the empirical variogram of the temperature
(Ordinary Kriging) and of the residuals from the linear dependence on
elevation (Universal Kriging with elevation as external drift). Both are
cross-validated. Requires python >= 3.11.
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
from station_gridding.analysis import temperature_kriging
from station_gridding.io import get_recurse
from station_gridding.utils import init_logging

# Debugging
import logging

parser = argparse.ArgumentParser()
parser.add_argument(
    "-config",
    dest="config",
    required=False,
    default=os.path.join(os.path.dirname(__file__), "config_kriging.yaml"),
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

    results = temperature_kriging(config)

    config["summary"]["end"] = str(datetime.today())
    config["summary"]["n_stations"] = results["n_stations"]
    config["summary"]["lapse_rate"] = results["lapse_rate"]
    config["summary"]["variogram"] = {
        name: {"model": fit["model"], "sserr": fit["sserr"]}
        | {k: v for k, v in fit["params"].items() if k != "anis"}
        for name, fit in results["variogram"].items()
    }
    config["summary"]["cv"] = results["cv"]
    config["summary"]["figures"] = results["figures"]

    output_directory = os.path.dirname(results["grid"])
    config_copy = os.path.join(output_directory, "config.yaml")
    logging.info(f"Writing configuration and summary to {config_copy}")
    with open(config_copy, "w") as io:
        yaml.safe_dump(config, io)


if __name__ == "__main__":
    main()

"""
NOAA
----

Client for the NOAA Climate Data Online (CDO) web services, version 2. Used to
retrieve station metadata and yearly precipitation totals (Global Summary of
the Year, "GSOY") for a country.

A free access token is required, see https://www.ncdc.noaa.gov/cdo-web/token.
The token is sent in the "token" header of each request.
"""

import logging
import os
import time
from typing import Any
import polars as pl
import requests

from .constants import NOAA_BASE_URL, NOAA_PAGE_LIMIT, NOAA_TOKEN_ENV

STATION_SCHEMA: dict[str, Any] = {
    "station": pl.String,
    "name": pl.String,
    "lat": pl.Float64,
    "lon": pl.Float64,
    "elevation": pl.Float64,
}

DATA_SCHEMA: dict[str, Any] = {
    "station": pl.String,
    "date": pl.String,
    "datatype": pl.String,
    "value": pl.Float64,
}


def _to_float(value: Any) -> float | None:
    return None if value is None else float(value)


def get_token(token: str | None = None) -> str:
    """
    Get the NOAA access token. An explicitly passed token takes precedence over
    the environment variable NOAA_TOKEN.
    """
    token = token or os.environ.get(NOAA_TOKEN_ENV)
    if not token:
        raise ValueError(
            "No NOAA access token. Set it in the configuration or in the "
            + f"{NOAA_TOKEN_ENV} environment variable."
        )
    return token


class NOAAClient:
    """
    Client for the NOAA Climate Data Online v2 API.

    Parameters
    ----------
    token : str
        NOAA CDO access token.
    base_url : str
        Base url of the web services.
    page_limit : int
        Number of records requested per page, the API maximum is 1000.
    timeout : float
        Timeout (seconds) for each request.
    request_interval : float
        Pause (seconds) between consecutive requests. The API accepts at most
        5 requests per second.
    session : requests.Session | None
        Optionally provide a session, a new session is created otherwise.
    """

    def __init__(
        self,
        token: str,
        base_url: str = NOAA_BASE_URL,
        page_limit: int = NOAA_PAGE_LIMIT,
        timeout: float = 60,
        request_interval: float = 0.2,
        session: requests.Session | None = None,
    ) -> None:
        if not 0 < page_limit <= NOAA_PAGE_LIMIT:
            raise ValueError(
                f"page_limit must be between 1 and {NOAA_PAGE_LIMIT}"
            )
        self.base_url = base_url.rstrip("/")
        self.page_limit = page_limit
        self.timeout = timeout
        self.request_interval = request_interval
        self.session = session or requests.Session()
        self.session.headers.update({"token": token})
        return None

    def get(self, endpoint: str, **params) -> list[dict]:
        """
        Get all results from an endpoint, following the pagination of the API.

        Parameters
        ----------
        endpoint : str
            Name of the endpoint, for example "stations" or "data".
        **params
            Query parameters, `None` values are dropped.

        Returns
        -------
        results : list[dict]
            All records from all pages.
        """
        url = f"{self.base_url}/{endpoint}"
        params = {k: v for k, v in params.items() if v is not None}
        results: list[dict] = []
        offset = 1  # The API offset is 1-based
        while True:
            page_params = params | {"limit": self.page_limit, "offset": offset}
            logging.debug(f"GET {url} with {page_params}")
            response = self.session.get(
                url, params=page_params, timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
            # Empty body: no (more) results
            if not body:
                break
            results.extend(body.get("results", []))
            count = body["metadata"]["resultset"]["count"]
            offset += self.page_limit
            if offset > count:
                break
            time.sleep(self.request_interval)
        logging.info(f"Retrieved {len(results)} records from {endpoint}")
        return results

    def stations(
        self,
        dataset_id: str,
        location_id: str,
        data_type_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> pl.DataFrame:
        """
        Get station metadata for a dataset and location.

        Parameters
        ----------
        dataset_id : str
            For example "GSOY".
        location_id : str
            For example "FIPS:GM" for Germany.
        data_type_id : str | None
            Only stations recording this data type, e.g. "PRCP".
        start_date, end_date : str | None
            ISO formatted dates (YYYY-MM-DD) limiting the period of record.

        Returns
        -------
        stations : polars.DataFrame
            With columns "station", "name", "lat", "lon", "elevation".
        """
        records = self.get(
            "stations",
            datasetid=dataset_id,
            locationid=location_id,
            datatypeid=data_type_id,
            startdate=start_date,
            enddate=end_date,
        )
        return pl.DataFrame(
            [
                {
                    "station": r["id"],
                    "name": r.get("name"),
                    "lat": float(r["latitude"]),
                    "lon": float(r["longitude"]),
                    "elevation": _to_float(r.get("elevation")),
                }
                for r in records
            ],
            schema=STATION_SCHEMA,
        )

    def data(
        self,
        dataset_id: str,
        data_type_id: str,
        location_id: str,
        start_date: str,
        end_date: str,
        units: str = "metric",
    ) -> pl.DataFrame:
        """
        Get observations for a dataset, data type, location and period.

        Returns
        -------
        data : polars.DataFrame
            With columns "station", "date", "datatype", "value".
        """
        records = self.get(
            "data",
            datasetid=dataset_id,
            datatypeid=data_type_id,
            locationid=location_id,
            startdate=start_date,
            enddate=end_date,
            units=units,
        )
        return pl.DataFrame(
            [
                {
                    "station": r["station"],
                    "date": r["date"],
                    "datatype": r["datatype"],
                    "value": float(r["value"]),
                }
                for r in records
            ],
            schema=DATA_SCHEMA,
        )


def yearly_precipitation(
    client: NOAAClient,
    year: int,
    location_id: str = "FIPS:GM",
) -> pl.DataFrame:
    """
    Get the total yearly precipitation (mm) recorded by each station within
    a location, joined to the station metadata.

    Parameters
    ----------
    client : NOAAClient
    year : int
        The year of the observations.
    location_id : str
        The NOAA location identifier, defaults to Germany ("FIPS:GM").

    Returns
    -------
    df : polars.DataFrame
        With columns "station", "name", "lat", "lon", "elevation", "prcp".
        Stations without a precipitation total for the year are dropped.
    """
    start_date = f"{year}-01-01"
    end_date = f"{year}-12-31"
    prcp = client.data(
        "GSOY", "PRCP", location_id, start_date, end_date, units="metric"
    )
    stations = client.stations(
        "GSOY",
        location_id,
        data_type_id="PRCP",
        start_date=start_date,
        end_date=end_date,
    )
    df = stations.join(
        prcp.select(["station", pl.col("value").alias("prcp")]),
        on="station",
        how="inner",
    )
    logging.info(f"{df.height} stations with precipitation totals for {year}")
    return df

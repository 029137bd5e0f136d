"""Constants used by various functions and methods within the library"""

RADIUS_OF_EARTH_KM: float = 6371.0  # Average radius of Earth (km)

# Coordinate reference systems
WGS84: str = "EPSG:4326"
ETRS89_LAEA: str = "EPSG:3035"  # Pan-European equal area (Germany analysis)
ETRS89_UTM31N: str = "EPSG:25831"  # Catalunya analysis

# NOAA Climate Data Online (v2) web services
NOAA_BASE_URL: str = "https://www.ncei.noaa.gov/cdo-web/api/v2"
NOAA_PAGE_LIMIT: int = 1000  # Maximum page size accepted by the API
NOAA_TOKEN_ENV: str = "NOAA_TOKEN"

"""
Configuration and Constants
============================
Centralized configuration for the transit map data toolkit.
"""

import os
from pathlib import Path

# ============================================================================
# PATHS
# ============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "public" / "data"
OUTPUT_DIR = PROJECT_ROOT / "outputs"

OVERRIDES_FILE = DATA_DIR / "stops_overrides.csv"
ROUTES_OVERRIDES_FILE = DATA_DIR / "routes_overrides.csv"
BEARINGS_FILE = PROJECT_ROOT / "src" / "data" / "stop_bearings.json"

# Hand-edited JSON overrides, first existing file wins
ROUTES_CONFIG_FILES = [
    PROJECT_ROOT / "src" / "data" / "routes_config.json",
    DATA_DIR / "routes_config.json",
]
STOPS_CONFIG_FILES = [
    PROJECT_ROOT / "src" / "data" / "stops_config.json",
    DATA_DIR / "stops_config.json",
]

# ============================================================================
# TRANSIT API
# ============================================================================

API_KEY = os.environ.get("TRANSIT_API_KEY", "c0a2f304-551a-4d08-b8df-2c53ecd57f9f")

API_BASES = {
    'tbilisi': "https://transit.ttc.com.ge/pis-gateway/api/v2",
    'rustavi': "https://rustavi-transit.azrycloud.com/pis-gateway/api/v2",
}

USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)

# 'ru' errors on the Tbilisi API
LOCALES = ['en', 'ka']

REQUEST_TIMEOUT = 30

# ============================================================================
# FETCH BEHAVIOUR
# ============================================================================

FETCH_RETRIES = 3
FETCH_BACKOFF = 0.5  # Seconds, multiplied by the attempt number

LOCALE_DELAY = 0.5   # Between locale passes
ROUTE_DELAY = 0.05   # Between routes
PATTERN_DELAY = 0.02  # Between pattern suffix requests

BEARING_BATCH_SIZE = 5
BEARING_BATCH_DELAY = 0.2

# ============================================================================
# OVERRIDE TABLE
# ============================================================================

ID_COLUMN = 'id'
ROTATION_COLUMN = 'rotation'
OVERRIDE_SUFFIX = '_override'

# Locale whose name column receives the upstream name for new rows
DEFAULT_NAME_LOCALE = 'en'

# Default map center (Tbilisi)
DEFAULT_MAP_CENTER = (41.7151, 44.8271)
DEFAULT_ZOOM = 12

import os

# --- Backend Configuration ---
# Base URL of the streaming backend. The CGI endpoints of older deployments can
# be reached by pointing this at the cgi-bin prefix and adjusting the paths.
SERVER_URL = os.getenv('STREAM_EXPLORER_SERVER_URL', 'http://localhost:8080')
STREAM_PATH = '/stream'
PROFILE_PATH = '/profile'
TOPICS_PATH = '/topics'
IDS_PATH = '/ids'
HTTP_TIMEOUT_SECONDS = 10  # connect/read timeout for JSON requests, streams are unbounded

# --- Stream Configuration ---
FOREVER = 'forever'  # `end` value that keeps a live-tail stream open
LIVE_RECONNECT_DELAY_SECONDS = 1  # fixed delay before re-opening a failed live-tail stream
AUTOFRESH_RESUME_WINDOW_SECONDS = 600  # resume live-tail from window end if it is this recent

# --- Cache & Chart Configuration ---
APPROXIMATE_TOLERANCE_MS = 7000  # ids closer than this are treated as the same boundary
REDRAW_BATCH_SIZE = 10  # fine granularities redraw once per this many points
CLUSTER_HOST = 'cluster'  # synthetic host summing every other host
DEFAULT_ZOOM_START = 50  # initial zoom extent, percent of the full data range
DEFAULT_ZOOM_END = 100

# --- Profile Configuration ---
DEFAULT_GRANULARITY = 's'
PROFILE_SAVE_INTERVAL_SECONDS = 30
DISCOVERY_INTERVAL_SECONDS = 1

# --- User Time Entry ---
MIN_USER_YEAR = 2015
MAX_USER_YEAR = 2115

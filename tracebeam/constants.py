# -*- coding: utf-8 -*-
from pathlib import Path

DIR_NAME = ".tracebeam"


def get_user_dir() -> Path:
    """
    Get the user directory for the tracebeam configuration.

    Returns:
        Path: The user directory path.
    """
    path = Path("~", DIR_NAME).expanduser()
    return path


USER_CONFIG_DIR = get_user_dir()

CONFIG_FILE_NAME = "config.ini"
CONFIG_FILE_USER = USER_CONFIG_DIR / CONFIG_FILE_NAME
CONFIG_SETTINGS_SECTION = "settings"

ENV_PREFIX = "TRACEBEAM_"

DEFAULT_BASE_URL = "https://cloud.tracebeam.dev"
INGESTION_ENDPOINT = "/api/public/ingestion"

# Delivery defaults, all durations in seconds
DEFAULT_FLUSH_AT = 15
DEFAULT_FLUSH_INTERVAL = 10.0
DEFAULT_FETCH_RETRY_COUNT = 3
DEFAULT_FETCH_RETRY_DELAY = 3.0
DEFAULT_FETCH_RETRY_MAX_DELAY = 30.0
DEFAULT_FETCH_RETRY_JITTER = 0.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_SDK_INTEGRATION = "DEFAULT"

# Size limits of the ingestion API
MAX_EVENT_BYTES = 1_000_000
MAX_BATCH_BYTES = 2_500_000
TRUNCATED_PLACEHOLDER = "<truncated due to size exceeding limit>"
TRUNCATABLE_FIELDS = ("input", "output", "metadata")

# Status codes worth another attempt besides 5xx
RETRYABLE_STATUS_CODES = frozenset({408, 429})

SHUTDOWN_TIMEOUT = 30.0

# Commit hash variables of common hosting/CI providers, checked in order
COMMON_RELEASE_ENVS = (
    "VERCEL_GIT_COMMIT_SHA",
    "NEXT_PUBLIC_VERCEL_GIT_COMMIT_SHA",
    "COMMIT_REF",
    "RENDER_GIT_COMMIT",
    "CI_COMMIT_SHA",
    "CIRCLE_SHA1",
    "CF_PAGES_COMMIT_SHA",
    "REACT_APP_GIT_SHA",
    "SOURCE_VERSION",
)

# Exit codes
EXIT_CODE_OK = 0
EXIT_CODE_FAILURE = 1
EXIT_CODE_CONFIGURATION = 65
EXIT_CODE_DELIVERY_FAILED = 66

"""
Shared constants, enums, and defaults for the TVMaze to Heartcore migrator.

This module centralizes all magic strings/numbers and provides type-safe
enums for the configurable behaviours of the upsert pipeline.
"""

import os
from enum import Enum
from typing import Final


def _get_bool_env(key: str, default: bool = False, environ=None) -> bool:
    """Get boolean from environment variable."""
    env = os.environ if environ is None else environ
    value = (env.get(key) or "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default

# =============================================================================
# Enums
# =============================================================================

class ExistingPolicy(str, Enum):
    """
    What to do with a show that already exists under the parent node.

    Inherits from str so it can be compared against raw env values.
    """
    SKIP = "skip"
    UPDATE = "update"


class GenreFormat(str, Enum):
    """Output shape of the showGenres property."""
    TAGS = "tags"      # "Drama,Thriller"
    BLOCKS = "blocks"  # Block List of genre elements


class SummaryFormat(str, Enum):
    """Whether summaries are sent with their HTML markup or as plain text."""
    HTML = "html"
    TEXT = "text"


class ImageSize(str, Enum):
    """Preferred TVMaze poster resolution."""
    MEDIUM = "medium"
    ORIGINAL = "original"


class ImageFormat(str, Enum):
    """Transcode target when resizing posters."""
    JPG = "jpg"
    PNG = "png"

    @property
    def pil_format(self) -> str:
        return "JPEG" if self == ImageFormat.JPG else "PNG"

    @property
    def content_type(self) -> str:
        return "image/jpeg" if self == ImageFormat.JPG else "image/png"


# =============================================================================
# Heartcore Content Model
# =============================================================================

CONTENT_TYPE_ALIAS: Final = "tVShow"
INVARIANT: Final = "$invariant"
PROP_SHOW_ID: Final = "showId"
PROP_SUMMARY: Final = "showSummary"
PROP_GENRES: Final = "showGenres"
PROP_IMAGE: Final = "showImage"
GENRE_ELEMENT_VALUE_ALIAS: Final = "genre"
MEDIA_TYPE_ALIAS: Final = "Image"
MEDIA_FILE_PROPERTY: Final = "umbracoFile"

# Field names the Management API may use for a created item's key
CREATED_KEY_FIELDS: Final = ("_id", "id", "key")


# =============================================================================
# External URLs
# =============================================================================

TVMAZE_API_BASE: Final = "https://api.tvmaze.com"
HEARTCORE_API_BASE: Final = "https://api.umbraco.io/"
TRANSLATOR_DEFAULT_ENDPOINT: Final = "https://api.cognitive.microsofttranslator.com"
CHILDREN_PAGE_SIZE: Final = 500


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_CULTURES: Final = ("en-US",)
DEFAULT_MAX_DEGREE: Final = 16  # tuned for speed
DEFAULT_REQUESTS_PER_SECOND: Final = 50  # conservative for Heartcore plans
DEFAULT_IMAGE_QUALITY: Final = 80
DEFAULT_HTTP_TIMEOUT: Final = 300.0  # bulk operations can be slow
DEFAULT_SOURCE_CULTURE: Final = "en"


# =============================================================================
# Rate Limits & Retry Settings
# =============================================================================

RATE_LIMIT_TVMAZE: Final = 2  # TVMaze allows 20 calls / 10s per IP
RATE_LIMIT_POLL_INTERVAL: Final = 0.005  # seconds between token checks
MAX_RETRIES: Final = 3
RETRY_BACKOFF_BASE: Final = 0.5  # urllib3 exponential backoff factor
IMAGE_FETCH_ATTEMPTS: Final = 3
IMAGE_RETRY_BACKOFF: Final = 0.5  # seconds, multiplied by attempt number
IMAGE_TIMEOUT: Final = 30.0


# =============================================================================
# Progress Reporting
# =============================================================================

PROGRESS_EVERY: Final = 500  # upsert outcomes between progress lines
DOWNLOAD_PROGRESS_EVERY: Final = 10  # pages between download progress lines

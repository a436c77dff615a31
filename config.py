"""
Typed configuration for the Heartcore migration.

Values come from environment variables so secrets never need to be in source
control. An optional dotenv file (HEARTCORE_ENV_FILE) fills in keys that are
not already set in the environment.
"""

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from constants import (
    _get_bool_env,
    DEFAULT_CULTURES,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_IMAGE_QUALITY,
    DEFAULT_MAX_DEGREE,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_SOURCE_CULTURE,
    TRANSLATOR_DEFAULT_ENDPOINT,
    ExistingPolicy,
    GenreFormat,
    ImageFormat,
    ImageSize,
    SummaryFormat,
)
from text_utils import parse_cultures

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when required settings are missing or malformed."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


def _env_int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    """Parse an int, keeping the default for empty or unparsable values."""
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {key}={raw!r}, using {default}")
        return default


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {key}={raw!r}, using {default}")
        return default


def _env_uuid(env: Mapping[str, str], key: str, problems: List[str]) -> Optional[str]:
    """Parse a GUID into its canonical lowercase form, recording malformed values."""
    raw = (env.get(key) or "").strip()
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        problems.append(f"{key} is not a valid GUID: {raw!r}")
        return None


def _env_enum(env: Mapping[str, str], key: str, enum_cls, default, problems: List[str]):
    raw = (env.get(key) or "").strip().lower()
    if not raw:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        problems.append(f"{key} must be one of: {allowed} (got {raw!r})")
        return default


def load_dotenv(file_path: str, environ: Dict[str, str]) -> None:
    """
    Merge KEY=VALUE lines from a dotenv file into environ.

    Keys already present in environ win. Missing files are ignored.
    """
    if not file_path or not os.path.exists(file_path):
        return
    with open(file_path, "r", encoding="utf-8") as fp:
        for line in fp:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or "=" not in stripped:
                continue
            key, value = stripped.split("=", 1)
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            if key:
                environ.setdefault(key, value.strip().strip('"').strip("'"))


@dataclass(frozen=True)
class HeartcoreOptions:
    """
    Strongly-typed configuration for the migration.

    Build with HeartcoreOptions.from_environment() and call validate()
    before touching the network.
    """
    project_alias: str = ""
    api_key: str = ""
    shows_parent_key: Optional[str] = None
    media_folder_key: Optional[str] = None
    import_cultures: Tuple[str, ...] = DEFAULT_CULTURES
    publish_immediately: bool = False
    max_degree_of_parallelism: int = DEFAULT_MAX_DEGREE
    take: int = 0  # 0 = all shows
    requests_per_second: int = DEFAULT_REQUESTS_PER_SECOND
    existing_policy: ExistingPolicy = ExistingPolicy.SKIP
    genre_format: GenreFormat = GenreFormat.TAGS
    genre_element_type_key: Optional[str] = None
    summary_format: SummaryFormat = SummaryFormat.HTML

    # Image handling (single-call multipart upload)
    image_preferred_size: ImageSize = ImageSize.MEDIUM
    image_max_width: Optional[int] = None
    image_max_height: Optional[int] = None
    image_transcode_format: ImageFormat = ImageFormat.JPG
    image_quality: int = DEFAULT_IMAGE_QUALITY

    # Optional machine translation of summaries
    use_translation: bool = False
    translator_key: Optional[str] = None
    translator_endpoint: str = TRANSLATOR_DEFAULT_ENDPOINT
    translator_region: Optional[str] = None
    source_culture: str = DEFAULT_SOURCE_CULTURE

    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    # Problems found while parsing, reported by validate()
    parse_problems: Tuple[str, ...] = field(default=(), repr=False, compare=False)

    @property
    def resize_images(self) -> bool:
        return bool(self.image_max_width or self.image_max_height)

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "HeartcoreOptions":
        """
        Load options from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (tests)

        Returns:
            Parsed options. Malformed GUIDs and enum values are collected and
            raised by validate(); malformed numbers fall back to defaults.
        """
        env: Dict[str, str] = dict(os.environ if environ is None else environ)
        load_dotenv(env.get("HEARTCORE_ENV_FILE", ""), env)

        problems: List[str] = []

        return cls(
            project_alias=(env.get("HEARTCORE_PROJECT_ALIAS") or "").strip(),
            api_key=(env.get("HEARTCORE_MANAGEMENT_API_KEY") or "").strip(),
            shows_parent_key=_env_uuid(env, "HEARTCORE_SHOWS_PARENT_KEY", problems),
            media_folder_key=_env_uuid(env, "HEARTCORE_MEDIA_FOLDER_KEY", problems),
            import_cultures=parse_cultures(env.get("HEARTCORE_IMPORT_CULTURES")),
            publish_immediately=_get_bool_env("HEARTCORE_PUBLISH_IMMEDIATELY", False, env),
            max_degree_of_parallelism=_env_int(env, "HEARTCORE_MAX_DEGREE", DEFAULT_MAX_DEGREE),
            take=_env_int(env, "HEARTCORE_TAKE", 0),
            requests_per_second=_env_int(env, "HEARTCORE_RPS", DEFAULT_REQUESTS_PER_SECOND),
            existing_policy=_env_enum(
                env, "HEARTCORE_EXISTING_POLICY", ExistingPolicy, ExistingPolicy.SKIP, problems),
            genre_format=_env_enum(
                env, "HEARTCORE_GENRE_FORMAT", GenreFormat, GenreFormat.TAGS, problems),
            genre_element_type_key=_env_uuid(env, "HEARTCORE_GENRE_ELEMENT_TYPE_KEY", problems),
            summary_format=_env_enum(
                env, "HEARTCORE_SUMMARY_FORMAT", SummaryFormat, SummaryFormat.HTML, problems),
            image_preferred_size=_env_enum(
                env, "HEARTCORE_IMAGE_SIZE", ImageSize, ImageSize.MEDIUM, problems),
            image_max_width=_env_int(env, "HEARTCORE_IMAGE_MAX_WIDTH", None),
            image_max_height=_env_int(env, "HEARTCORE_IMAGE_MAX_HEIGHT", None),
            image_transcode_format=_env_enum(
                env, "HEARTCORE_IMAGE_FORMAT", ImageFormat, ImageFormat.JPG, problems),
            image_quality=_env_int(env, "HEARTCORE_IMAGE_QUALITY", DEFAULT_IMAGE_QUALITY),
            use_translation=_get_bool_env("HEARTCORE_USE_TRANSLATION", False, env),
            translator_key=(env.get("HEARTCORE_TRANSLATOR_KEY") or "").strip() or None,
            translator_endpoint=(
                (env.get("HEARTCORE_TRANSLATOR_ENDPOINT") or "").strip()
                or TRANSLATOR_DEFAULT_ENDPOINT
            ),
            translator_region=(env.get("HEARTCORE_TRANSLATOR_REGION") or "").strip() or None,
            source_culture=(
                (env.get("HEARTCORE_SOURCE_CULTURE") or "").strip() or DEFAULT_SOURCE_CULTURE
            ),
            http_timeout=_env_float(env, "HEARTCORE_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            parse_problems=tuple(problems),
        )

    def validate(self) -> "HeartcoreOptions":
        """
        Check that the options are usable.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: listing every problem found
        """
        problems = list(self.parse_problems)

        if not self.project_alias:
            problems.append("HEARTCORE_PROJECT_ALIAS is required")
        if not self.api_key:
            problems.append("HEARTCORE_MANAGEMENT_API_KEY is required")
        if not self.shows_parent_key and not any(
            p.startswith("HEARTCORE_SHOWS_PARENT_KEY") for p in problems
        ):
            problems.append("HEARTCORE_SHOWS_PARENT_KEY is required")
        if self.genre_format == GenreFormat.BLOCKS and not self.genre_element_type_key:
            problems.append(
                "HEARTCORE_GENRE_ELEMENT_TYPE_KEY is required when HEARTCORE_GENRE_FORMAT=blocks"
            )
        if self.use_translation and not self.translator_key:
            problems.append("HEARTCORE_TRANSLATOR_KEY is required when HEARTCORE_USE_TRANSLATION=true")
        if not 1 <= self.image_quality <= 100:
            problems.append(f"HEARTCORE_IMAGE_QUALITY must be 1-100 (got {self.image_quality})")

        if problems:
            raise ConfigurationError(problems)
        return self

    @property
    def worker_count(self) -> int:
        return max(1, self.max_degree_of_parallelism)

    def describe(self) -> Dict[str, object]:
        """Non-secret settings for the startup log line."""
        return {
            "project": self.project_alias,
            "parent": self.shows_parent_key,
            "cultures": list(self.import_cultures),
            "workers": self.worker_count,
            "rps": max(1, self.requests_per_second),
            "take": self.take,
            "existing_policy": self.existing_policy.value,
            "genre_format": self.genre_format.value,
            "publish": self.publish_immediately,
            "translation": self.use_translation,
        }

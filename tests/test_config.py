import pytest

from config import ConfigurationError, HeartcoreOptions, load_dotenv
from constants import ExistingPolicy, GenreFormat, ImageFormat, ImageSize, SummaryFormat

PARENT = "0F1E2D3C-4B5A-6978-8796-A5B4C3D2E1F0"

BASE_ENV = {
    "HEARTCORE_PROJECT_ALIAS": "my-project",
    "HEARTCORE_MANAGEMENT_API_KEY": "secret",
    "HEARTCORE_SHOWS_PARENT_KEY": PARENT,
}


def env(**extra):
    values = dict(BASE_ENV)
    values.update(extra)
    return values


class TestHeartcoreOptions:
    """Test loading options from environment variables"""

    def test_defaults(self):
        options = HeartcoreOptions.from_environment(BASE_ENV).validate()

        assert options.project_alias == "my-project"
        assert options.shows_parent_key == PARENT.lower()
        assert options.import_cultures == ("en-US",)
        assert options.publish_immediately is False
        assert options.max_degree_of_parallelism == 16
        assert options.requests_per_second == 50
        assert options.take == 0
        assert options.existing_policy == ExistingPolicy.SKIP
        assert options.genre_format == GenreFormat.TAGS
        assert options.summary_format == SummaryFormat.HTML
        assert options.image_preferred_size == ImageSize.MEDIUM
        assert options.resize_images is False
        assert options.use_translation is False

    def test_overrides(self):
        options = HeartcoreOptions.from_environment(env(
            HEARTCORE_IMPORT_CULTURES="en-US;da-DK",
            HEARTCORE_PUBLISH_IMMEDIATELY="true",
            HEARTCORE_MAX_DEGREE="4",
            HEARTCORE_RPS="10",
            HEARTCORE_TAKE="100",
            HEARTCORE_EXISTING_POLICY="Update",
            HEARTCORE_SUMMARY_FORMAT="text",
            HEARTCORE_IMAGE_SIZE="original",
            HEARTCORE_IMAGE_MAX_WIDTH="300",
            HEARTCORE_IMAGE_FORMAT="png",
        )).validate()

        assert options.import_cultures == ("en-US", "da-DK")
        assert options.publish_immediately is True
        assert options.worker_count == 4
        assert options.requests_per_second == 10
        assert options.take == 100
        assert options.existing_policy == ExistingPolicy.UPDATE
        assert options.summary_format == SummaryFormat.TEXT
        assert options.image_preferred_size == ImageSize.ORIGINAL
        assert options.image_max_width == 300
        assert options.image_transcode_format == ImageFormat.PNG
        assert options.resize_images is True

    def test_non_numeric_values_keep_defaults(self):
        options = HeartcoreOptions.from_environment(env(HEARTCORE_RPS="fast", HEARTCORE_TAKE="")).validate()

        assert options.requests_per_second == 50
        assert options.take == 0

    def test_worker_count_is_at_least_one(self):
        options = HeartcoreOptions.from_environment(env(HEARTCORE_MAX_DEGREE="0"))

        assert options.worker_count == 1

    def test_missing_required_values(self):
        with pytest.raises(ConfigurationError) as exc_info:
            HeartcoreOptions.from_environment({}).validate()

        problems = exc_info.value.problems
        assert "HEARTCORE_PROJECT_ALIAS is required" in problems
        assert "HEARTCORE_MANAGEMENT_API_KEY is required" in problems
        assert "HEARTCORE_SHOWS_PARENT_KEY is required" in problems

    def test_malformed_guid(self):
        with pytest.raises(ConfigurationError) as exc_info:
            HeartcoreOptions.from_environment(env(HEARTCORE_SHOWS_PARENT_KEY="not-a-guid")).validate()

        assert exc_info.value.problems == ["HEARTCORE_SHOWS_PARENT_KEY is not a valid GUID: 'not-a-guid'"]

    def test_unknown_enum_value(self):
        with pytest.raises(ConfigurationError) as exc_info:
            HeartcoreOptions.from_environment(env(HEARTCORE_EXISTING_POLICY="overwrite")).validate()

        assert "HEARTCORE_EXISTING_POLICY must be one of: skip, update" in str(exc_info.value)

    def test_blocks_require_element_type(self):
        with pytest.raises(ConfigurationError):
            HeartcoreOptions.from_environment(env(HEARTCORE_GENRE_FORMAT="blocks")).validate()

        options = HeartcoreOptions.from_environment(env(
            HEARTCORE_GENRE_FORMAT="blocks",
            HEARTCORE_GENRE_ELEMENT_TYPE_KEY="11111111-2222-3333-4444-555555555555",
        )).validate()
        assert options.genre_format == GenreFormat.BLOCKS

    def test_translation_requires_key(self):
        with pytest.raises(ConfigurationError):
            HeartcoreOptions.from_environment(env(HEARTCORE_USE_TRANSLATION="true")).validate()

    def test_describe_hides_secrets(self):
        described = HeartcoreOptions.from_environment(BASE_ENV).describe()

        assert "secret" not in str(described)
        assert described["project"] == "my-project"


class TestDotenv:
    def test_env_file_fills_missing_keys(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# Heartcore\n"
            "HEARTCORE_PROJECT_ALIAS=from-file\n"
            "export HEARTCORE_MANAGEMENT_API_KEY=\"file-secret\"\n"
            f"HEARTCORE_SHOWS_PARENT_KEY={PARENT}\n"
            "HEARTCORE_TAKE=5\n",
            encoding="utf-8",
        )

        options = HeartcoreOptions.from_environment({
            "HEARTCORE_ENV_FILE": str(env_file),
            "HEARTCORE_TAKE": "10",
        }).validate()

        assert options.project_alias == "from-file"
        assert options.api_key == "file-secret"
        assert options.take == 10

    def test_missing_file_is_ignored(self, tmp_path):
        environ = {"A": "1"}

        load_dotenv(str(tmp_path / "missing.env"), environ)

        assert environ == {"A": "1"}

import json
import logging

from logging_config import (
    HumanFormatter,
    StructuredFormatter,
    configure_logging,
    get_show_context,
    show_context,
)


def make_record(message="Created content", **extra):
    record = logging.LogRecord("upsert", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestShowContext:
    def test_context_is_scoped(self):
        assert get_show_context() is None
        with show_context(1001):
            assert get_show_context() == "1001"
        assert get_show_context() is None


class TestFormatters:
    def test_structured_includes_show_and_extras(self):
        with show_context(42):
            line = StructuredFormatter().format(make_record(outcome="created", culture="da-DK"))

        data = json.loads(line)
        assert data["show_id"] == "42"
        assert data["outcome"] == "created"
        assert data["culture"] == "da-DK"
        assert data["message"] == "Created content"
        assert data["level"] == "INFO"

    def test_human_prefix(self):
        formatter = HumanFormatter(use_colors=False, timestamps=False)

        with show_context(7):
            assert formatter.format(make_record()) == "INFO     [show 7] Created content"
        assert formatter.format(make_record()) == "INFO     Created content"


class TestConfigureLogging:
    def test_log_file_receives_json_lines(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        log_file = tmp_path / "migration.log"
        try:
            configure_logging(level="INFO", log_file=str(log_file))
            with show_context(5):
                logging.getLogger("upsert").info("Created: Lost")
            for handler in root.handlers:
                handler.flush()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        entry = json.loads(log_file.read_text(encoding="utf-8").splitlines()[0])
        assert entry["show_id"] == "5"
        assert entry["message"] == "Created: Lost"

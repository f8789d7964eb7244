import json
import logging
import sys

from cosrepo.common.logging import JsonFormatter, setup_logging


def _record(**kwargs) -> logging.LogRecord:
    record = logging.LogRecord(
        name="blobstore",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="bulk_delete_partial_failure bucket=%s failed=%s",
        args=("snapshots", 3),
        exc_info=None,
    )
    for key, value in kwargs.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_payload():
    record = _record(extra={"bucket": "snapshots", "failed_keys": 3})

    payload = json.loads(JsonFormatter().format(record))

    assert payload == {
        "level": "WARNING",
        "logger": "blobstore",
        "message": "bulk_delete_partial_failure bucket=snapshots failed=3",
        "bucket": "snapshots",
        "failed_keys": 3,
    }


def test_json_formatter_renders_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record(exc_info=sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))

    assert "RuntimeError: boom" in payload["exception"]


def test_setup_logging_sets_root_level():
    root = logging.getLogger()
    previous_level = root.level
    previous_handlers = list(root.handlers)
    deprecation = logging.getLogger("deprecation")
    previous_propagate = deprecation.propagate
    previous_deprecation_handlers = list(deprecation.handlers)
    try:
        setup_logging("DEBUG")

        assert root.level == logging.DEBUG
        assert not deprecation.propagate
    finally:
        root.setLevel(previous_level)
        root.handlers[:] = previous_handlers
        deprecation.propagate = previous_propagate
        deprecation.handlers[:] = previous_deprecation_handlers

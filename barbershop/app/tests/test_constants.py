import importlib
import logging

import pytest

from barbershop import config
from barbershop.app.core import constants


@pytest.fixture
def reload_constants(monkeypatch):
    """Reload constants with a temporary env state, restoring defaults afterwards."""

    def _reload(**env) -> object:
        for key, value in env.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, value)
        return importlib.reload(constants)

    yield _reload
    monkeypatch.undo()
    importlib.reload(constants)


def test_env_helpers_parse_ints_and_bools(reload_constants):
    module = reload_constants(
        SYNC_DEBOUNCE_INSERT_MS="750",
        SYNC_RECONNECT_SECONDS="5",
        RUN_BOOTSTRAP="yes",
        SYNC_BROADCAST_ENABLED="on",
    )
    assert module.SYNC_DEBOUNCE_INSERT_MS == 750
    assert module.SYNC_RECONNECT_SECONDS == 5
    assert module.RUN_BOOTSTRAP_ENABLED is True
    assert module.SYNC_BROADCAST_ENABLED is True


def test_env_helpers_fallbacks(reload_constants):
    module = reload_constants(SYNC_DEBOUNCE_MUTATION_MS="oops", SYNC_APPOINTMENTS_CHANNEL="  ")
    assert module.SYNC_DEBOUNCE_MUTATION_MS == 300
    assert module.APPOINTMENTS_CHANNEL == "appointments_changes"


def test_recurrence_ceiling_is_never_raised(reload_constants):
    assert reload_constants(MAX_RECURRENCE_OCCURRENCES="500").MAX_RECURRENCE_OCCURRENCES == 52
    assert reload_constants(MAX_RECURRENCE_OCCURRENCES="10").MAX_RECURRENCE_OCCURRENCES == 10
    assert reload_constants(MAX_RECURRENCE_OCCURRENCES="0").MAX_RECURRENCE_OCCURRENCES == 1


def test_default_bounds():
    assert constants.DEFAULT_SERVICE_FALLBACK_DURATION == 30
    assert (constants.MIN_DURATION_OVERRIDE, constants.MAX_DURATION_OVERRIDE) == (5, 480)
    assert constants.BROADCAST_CHANNEL == "appointments_sync"
    assert constants.BROADCAST_EVENT == "appointments_change"


def test_debounce_seconds_by_event_type(monkeypatch):
    monkeypatch.setitem(config.SETTINGS, "sync_debounce_insert_ms", 500)
    monkeypatch.setitem(config.SETTINGS, "sync_debounce_mutation_ms", 300)
    assert config.get_debounce_seconds("INSERT") == 0.5
    assert config.get_debounce_seconds("insert") == 0.5
    assert config.get_debounce_seconds("UPDATE") == 0.3
    assert config.get_debounce_seconds("DELETE") == 0.3
    assert config.get_debounce_seconds("BROADCAST") == 0.3


def test_get_setting_default():
    assert config.get_setting("missing-key", "fallback") == "fallback"


def test_get_logger_returns_named_logger():
    from barbershop.app.core.logger import get_logger

    logger = get_logger("test-logger")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "test-logger"


def test_configure_logging_installs_rich_handler():
    from rich.logging import RichHandler

    from barbershop.app.core.logger import configure_logging

    configure_logging("debug")
    root = logging.getLogger()
    try:
        assert root.level == logging.DEBUG
        assert any(isinstance(h, RichHandler) for h in root.handlers)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        configure_logging("info")

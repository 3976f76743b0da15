from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from timelog.config import Settings
from timelog.logging_config import LOG_FORMAT, configure_logging


def test_settings_normalise_backend_and_zone():
    configured = Settings(active_users_backend=" Poll ", timezone="Europe/Berlin")
    assert configured.active_users_backend == "poll"
    assert configured.tzinfo.key == "Europe/Berlin"
    assert configured.database_url.startswith("sqlite:///")


@pytest.mark.parametrize(
    "overrides",
    [
        {"active_users_backend": "websocket"},
        {"timezone": "Mars/Olympus_Mons"},
        {"log_page_size": 0},
    ],
)
def test_settings_reject_invalid_values(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_configure_logging_sets_level(monkeypatch):
    calls = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.update(kwargs))
    configure_logging("debug")
    assert calls == {"level": logging.DEBUG, "format": LOG_FORMAT}

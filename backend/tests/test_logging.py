import logging

import pytest

from docshare import logging as docshare_logging
from docshare.config import settings


@pytest.mark.parametrize(
    "configured, expected",
    [("debug", logging.DEBUG), (" WARNING ", logging.WARNING), ("chatty", logging.INFO)],
)
def test_log_level_comes_from_settings(monkeypatch, configured, expected):
    monkeypatch.setattr(settings, "LOG_LEVEL", configured)
    assert docshare_logging._level_from_settings() == expected

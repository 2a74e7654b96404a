"""Settings validation."""
import pytest
from pydantic import ValidationError

from drift_engine.config import Settings

DB = "sqlite+aiosqlite:///:memory:"


def test_log_level_is_normalised():
    assert Settings(DATABASE_URL=DB, LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"


def test_unknown_log_level_rejected():
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL=DB, LOG_LEVEL="chatty")


def test_feed_limits_must_be_ordered():
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL=DB, FEED_DEFAULT_LIMIT=50, FEED_MAX_LIMIT=10)

from billcountdown.config.settings import Settings
from billcountdown.db.session import sqlite_connect_args


def test_sqlite_gets_short_busy_timeout():
    args = sqlite_connect_args("sqlite:///./billcountdown.db", 5.0)

    assert args == {"check_same_thread": False, "timeout": 5.0}


def test_other_backends_get_no_sqlite_args():
    assert sqlite_connect_args("postgresql://localhost/billcountdown", 5.0) == {}


def test_busy_timeout_defaults_well_below_sync_timeout():
    settings = Settings(_env_file=None)

    assert settings.SQLITE_BUSY_TIMEOUT_SECONDS == 5.0
    assert settings.SQLITE_BUSY_TIMEOUT_SECONDS < settings.SYNC_TIMEOUT_SECONDS

"""
Tests for configuration loading.

Config files are written to tmp_path; environment overrides are set with
monkeypatch (conftest clears them before every test).
"""

from __future__ import annotations

import pytest

from elicznik.config import ConfigError, load_config
from elicznik.scraper import LOGIN_URL


def test_full_config(full_config_path: str) -> None:
    config = load_config(full_config_path)

    assert config.tauron.username == "jan.kowalski"
    assert config.tauron.password == "secret"
    assert config.tauron.strategy == "api"
    assert config.tauron.csv_vocabulary == "full"
    assert config.tauron.end_date == "today"
    assert config.tauron.login_url == LOGIN_URL
    assert config.postgres.host == "db.example.com"
    assert config.postgres.dbname == "energy"
    assert config.postgres.port == 5432
    assert config.postgres.sslmode == "require"
    assert config.postgres.procedure == "tauron_add_entry"
    assert config.exporter.port == 9120
    assert config.exporter.schedule_hour == 4


def test_optional_settings(write_config) -> None:
    path = write_config("""
[tauron]
username = jan
password = secret
strategy = csv
csv_vocabulary = raw
end_date = provider
data_url = http://localhost/dane
timeout = 15.5

[postgres]
host = db
dbname = energy
username = u
password = p
port = 6432
procedure = add_reading

[exporter]
port = 9200
schedule_hour = 23
""")

    config = load_config(path)

    assert config.tauron.strategy == "csv"
    assert config.tauron.csv_vocabulary == "raw"
    assert config.tauron.end_date == "provider"
    assert config.tauron.data_url == "http://localhost/dane"
    assert config.tauron.timeout == 15.5
    assert config.postgres.port == 6432
    assert config.postgres.procedure == "add_reading"
    assert config.exporter.port == 9200
    assert config.exporter.schedule_hour == 23


def test_missing_keys_are_reported_together(write_config) -> None:
    path = write_config("""
[tauron]
username = jan

[postgres]
host = db
""")

    with pytest.raises(ConfigError) as exc_info:
        load_config(path)

    message = str(exc_info.value)
    for fragment in ("`password` in [tauron]", "`dbname` in [postgres]",
                     "`username` in [postgres]", "`password` in [postgres]"):
        assert fragment in message


def test_missing_tauron_section(write_config) -> None:
    path = write_config("[postgres]\nhost = db\ndbname = e\nusername = u\npassword = p\n")

    with pytest.raises(ConfigError, match=r"\[tauron\] section"):
        load_config(path)


def test_tauron_not_required_for_input_runs(write_config) -> None:
    path = write_config("[postgres]\nhost = db\ndbname = e\nusername = u\npassword = p\n")

    config = load_config(path, require_tauron=False)

    assert config.tauron is None
    assert config.postgres.host == "db"


def test_absent_postgres_section_disables_storage(write_config) -> None:
    config = load_config(write_config("[tauron]\nusername = jan\npassword = secret\n"))

    assert config.postgres is None


def test_environment_overrides(write_config, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TAURON_PASSWORD", "from-env")
    monkeypatch.setenv("POSTGRES_HOST", "env-db")
    path = write_config("""
[tauron]
username = jan
password = from-file

[postgres]
host = file-db
dbname = energy
username = u
password = p
""")

    config = load_config(path)

    assert config.tauron.password == "from-env"
    assert config.postgres.host == "env-db"


def test_environment_alone_provides_section(write_config, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TAURON_USERNAME", "jan")
    monkeypatch.setenv("TAURON_PASSWORD", "secret")

    config = load_config(write_config("[exporter]\nport = 9121\n"))

    assert config.tauron.username == "jan"
    assert config.exporter.port == 9121


@pytest.mark.parametrize("extra", [
    "strategy = soap",
    "csv_vocabulary = english",
    "end_date = tomorrow",
    "timeout = soon",
])
def test_invalid_tauron_values(write_config, extra: str) -> None:
    path = write_config(f"[tauron]\nusername = jan\npassword = secret\n{extra}\n")

    with pytest.raises(ConfigError, match="Invalid value"):
        load_config(path)


@pytest.mark.parametrize("section", [
    "[postgres]\nhost = db\ndbname = e\nusername = u\npassword = p\nport = x\n",
    "[exporter]\nport = nine\n",
    "[exporter]\nschedule_hour = 24\n",
])
def test_invalid_numbers(write_config, section: str) -> None:
    path = write_config("[tauron]\nusername = jan\npassword = secret\n" + section)

    with pytest.raises(ConfigError, match="Invalid value"):
        load_config(path)


def test_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError, match="Cannot open config file"):
        load_config(str(tmp_path / "nope.conf"))


def test_unparseable_file(write_config) -> None:
    with pytest.raises(ConfigError, match="Cannot parse"):
        load_config(write_config("username = jan\n"))

"""
Shared test fixtures for elicznik tests.

Provides sample provider payloads and config files. Environment overrides
are cleared before each test so a developer's .env never leaks in.
"""

from __future__ import annotations

import json

import pytest

from elicznik.config import ENV_OVERRIDES

CSV_HEADER = "Data; Wartość kWh;Rodzaj\n"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Remove config override env vars and run each test inside tmp_path."""
    for env_name in ENV_OVERRIDES.values():
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def csv_content() -> str:
    """A CSV export with every category and one malformed row."""
    return CSV_HEADER + (
        "2023-01-10 1:00;0,500;pobór\n"
        "2023-01-10 2:00;0,250;oddanie\n"
        "2023-01-10 24:00;1,125;pobrana po zbilansowaniu\n"
        "2023-01-10 23:00;0,075;oddana po zbilansowaniu\n"
        "2023-01-10 3:00;n/a;pobór\n"
    )


def make_json_document(records: list) -> str:
    return json.dumps({"success": True, "data": {"allData": records, "sum": 0}})


def make_record(day: str = "2023-01-10", hour: str = "1", value: str = "0,774",
                extra: str = "N", **kwargs) -> dict:
    record = {
        "EC": value,
        "Date": day,
        "Hour": hour,
        "Status": "0",
        "Extra": extra,
        "Zone": "1",
        "ZoneName": "całodobowa",
        "Taryfa": "G11",
    }
    record.update(kwargs)
    return record


@pytest.fixture()
def json_documents() -> dict:
    """Per-direction JSON documents as returned by the api strategy."""
    return {
        "imported": make_json_document([
            make_record(hour="1", value="0,774"),
            make_record(hour="24", value="0,100", extra="T"),
        ]),
        "exported": make_json_document([
            make_record(hour="12", value="2,5"),
        ]),
    }


@pytest.fixture()
def write_config(tmp_path):
    """Return a function writing an INI config file and returning its path."""
    def _write(text: str) -> str:
        path = tmp_path / "elicznik.conf"
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


FULL_CONFIG = """
[tauron]
username = jan.kowalski
password = secret

[postgres]
host = db.example.com
dbname = energy
username = elicznik
password = dbsecret
"""


@pytest.fixture()
def full_config_path(write_config) -> str:
    return write_config(FULL_CONFIG)

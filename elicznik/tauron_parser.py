"""Tauron eLicznik data parser module.

This module handles:
- The canonical hourly reading model shared by the scraper and database writer
- Decoding the semicolon-delimited CSV export (tolerant per row)
- Decoding the per-direction JSON documents (strict per document)
- Normalising the provider's comma decimals and 1..24 hour labels

Provider hour labels run from 1 to 24, where 24 is midnight of the next day.
A label H on date D decodes to D 00:00 + H hours, so every decoded reading
falls on an exact hour in the 0..23 range.
"""

import csv
import io
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

# Configure module logger
logger = logging.getLogger(__name__)

# CSV column names as written by the provider (header cells are stripped)
CSV_DATE_COLUMN = "Data"
CSV_VALUE_COLUMN = "Wartość kWh"
CSV_CATEGORY_COLUMN = "Rodzaj"

# JSON key path to the record list: {"data": {"allData": [...]}}
JSON_RECORDS_PATH = ("data", "allData")

JSON_FLAGS = {"T": True, "N": False}


class Direction(Enum):
    """Energy flow direction relative to the grid."""

    IMPORTED = "imported"
    EXPORTED = "exported"


class Category(Enum):
    """Four-way provider category: direction plus the balancing distinction."""

    IMPORTED = "imported"
    EXPORTED = "exported"
    BALANCED_IMPORTED = "balanced_imported"
    BALANCED_EXPORTED = "balanced_exported"


# category string -> (direction, balanced)
FULL_VOCABULARY: Dict[str, Tuple[Direction, bool]] = {
    "pobór": (Direction.IMPORTED, False),
    "oddanie": (Direction.EXPORTED, False),
    "pobrana po zbilansowaniu": (Direction.IMPORTED, True),
    "oddana po zbilansowaniu": (Direction.EXPORTED, True),
}

RAW_VOCABULARY: Dict[str, Tuple[Direction, bool]] = {
    "pobór": (Direction.IMPORTED, False),
    "oddanie": (Direction.EXPORTED, False),
}

VOCABULARIES = {
    "full": FULL_VOCABULARY,
    "raw": RAW_VOCABULARY,
}


@dataclass(frozen=True)
class Reading:
    """A single hourly meter reading.

    Attributes:
        timestamp: Local naive date-time on an exact hour boundary
        value: Energy in kWh
        direction: Whether the energy was drawn from or fed into the grid
        balanced: True for post-netting (balanced) corrections
        status: Provider status code (JSON shape only)
        zone: Provider zone id (JSON shape only)
        zone_name: Provider zone name (JSON shape only)
        tariff: Provider tariff name (JSON shape only)
    """
    timestamp: datetime
    value: float
    direction: Direction
    balanced: bool = False
    status: Optional[int] = field(default=None, compare=False)
    zone: Optional[str] = field(default=None, compare=False)
    zone_name: Optional[str] = field(default=None, compare=False)
    tariff: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        """Validate reading data."""
        if self.timestamp.minute or self.timestamp.second or self.timestamp.microsecond:
            raise ValueError(f"Timestamp must fall on an hour boundary, got {self.timestamp}")
        if not math.isfinite(self.value) or self.value < 0:
            raise ValueError(f"Value must be a finite non-negative number, got {self.value}")

    @property
    def date(self) -> date:
        return self.timestamp.date()

    @property
    def hour(self) -> int:
        return self.timestamp.hour

    @property
    def category(self) -> Category:
        if self.direction is Direction.IMPORTED:
            return Category.BALANCED_IMPORTED if self.balanced else Category.IMPORTED
        return Category.BALANCED_EXPORTED if self.balanced else Category.EXPORTED


@dataclass
class TauronData:
    """Decoded provider data, split into one batch per direction.

    Attributes:
        imported: Readings of energy drawn from the grid
        exported: Readings of energy fed into the grid
        errors: Structural decode errors of discarded per-direction documents
    """
    imported: List[Reading] = field(default_factory=list)
    exported: List[Reading] = field(default_factory=list)
    errors: Dict[Direction, str] = field(default_factory=dict)

    def batch(self, direction: Direction) -> List[Reading]:
        return self.imported if direction is Direction.IMPORTED else self.exported

    def __len__(self) -> int:
        return len(self.imported) + len(self.exported)


class TauronParseError(Exception):
    """Exception raised when a provider document cannot be decoded."""
    pass


class NoReadingsError(TauronParseError):
    """Exception raised when decoding yields no readings at all."""
    pass


def parse_decimal(value: str) -> float:
    """Parse a provider decimal such as "0,774".

    Args:
        value: Decimal string using a comma as fractional separator

    Returns:
        Parsed float value

    Raises:
        ValueError: If the string is not a number once normalised
    """
    return float(value.strip().replace(",", "."))


def hour_to_datetime(day: date, hour: int) -> datetime:
    """Convert a provider date and 1..24 hour label to a timestamp.

    Example:
        >>> hour_to_datetime(date(2023, 1, 10), 24)
        datetime.datetime(2023, 1, 11, 0, 0)
    """
    if not (1 <= hour <= 24):
        raise ValueError(f"Hour must be 1-24, got {hour}")
    return datetime(day.year, day.month, day.day) + timedelta(hours=hour)


def datetime_to_hour(timestamp: datetime) -> Tuple[date, int]:
    """Inverse of hour_to_datetime: midnight becomes hour 24 of the previous day."""
    if timestamp.hour == 0:
        return timestamp.date() - timedelta(days=1), 24
    return timestamp.date(), timestamp.hour


def parse_timestamp(value: str) -> datetime:
    """Parse a CSV timestamp such as "2023-01-10 24:00".

    The provider writes the hour label (1..24) where a "%M:%H" pattern
    expects the minute, so the string is read with that pattern layout:
    the leading field is the hour label and the trailing field must be
    numeric.

    Args:
        value: Timestamp string from the CSV "Data" column

    Returns:
        Decoded timestamp on an exact hour

    Raises:
        ValueError: If the string does not match the pattern
    """
    try:
        day_part, time_part = value.strip().split(" ")
        hour_part, trailing = time_part.split(":")
    except ValueError:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if not (hour_part.isdigit() and trailing.isdigit() and len(trailing) <= 2):
        raise ValueError(f"Invalid timestamp: {value!r}")

    day = datetime.strptime(day_part, "%Y-%m-%d").date()
    return hour_to_datetime(day, int(hour_part))


def _parse_csv_row(row: Dict[str, str], vocabulary: Dict[str, Tuple[Direction, bool]]) -> Reading:
    """Decode one CSV row, raising ValueError/KeyError on any field failure."""
    category = row[CSV_CATEGORY_COLUMN]
    if category is None or category.strip() not in vocabulary:
        raise ValueError(f"Unknown category: {category!r}")
    direction, balanced = vocabulary[category.strip()]

    return Reading(
        timestamp=parse_timestamp(row[CSV_DATE_COLUMN]),
        value=parse_decimal(row[CSV_VALUE_COLUMN]),
        direction=direction,
        balanced=balanced,
    )


def parse_csv(csv_content: str, vocabulary: str = "full") -> TauronData:
    """Parse the semicolon-delimited CSV export.

    Malformed rows are dropped (logged at debug level); only an empty
    overall result is an error.

    Args:
        csv_content: Raw CSV content including the header row
        vocabulary: "full" (four categories) or "raw" (pobór/oddanie only)

    Returns:
        TauronData with readings split by direction

    Raises:
        NoReadingsError: If no row could be decoded
        TauronParseError: If the vocabulary name is unknown

    Example:
        >>> data = parse_csv("Data;Wartość kWh;Rodzaj\\n2023-01-10 1:01;0,500;pobór\\n")
        >>> data.imported[0].value
        0.5
    """
    if vocabulary not in VOCABULARIES:
        raise TauronParseError(f"Unknown CSV vocabulary: {vocabulary}")
    categories = VOCABULARIES[vocabulary]

    logger.info("Parsing CSV entries")
    reader = csv.reader(io.StringIO(csv_content.lstrip("\ufeff")), delimiter=";")
    header = next(reader, None)
    data = TauronData()

    if header is None:
        raise NoReadingsError("No entries available: empty CSV document")

    columns = [name.strip() for name in header]
    skipped = 0

    for line_num, cells in enumerate(reader, 2):
        if not any(cell.strip() for cell in cells):
            continue
        row = dict(zip(columns, cells))
        try:
            reading = _parse_csv_row(row, categories)
        except (KeyError, ValueError) as e:
            skipped += 1
            logger.debug(f"Line {line_num}: skipping row {cells}: {e}")
            continue
        data.batch(reading.direction).append(reading)

    if skipped:
        logger.debug(f"Skipped {skipped} malformed CSV rows")

    if not data:
        raise NoReadingsError("No entries available in CSV document")

    return data


def _json_records(document: str) -> list:
    try:
        payload = json.loads(document)
    except (TypeError, ValueError) as e:
        raise TauronParseError(f"Malformed JSON document: {e}")

    records = payload
    for key in JSON_RECORDS_PATH:
        if not isinstance(records, dict) or key not in records:
            raise TauronParseError(f"Unexpected JSON shape: missing {'.'.join(JSON_RECORDS_PATH)}")
        records = records[key]

    if not isinstance(records, list):
        raise TauronParseError("Unexpected JSON shape: records are not a list")
    return records


def _text_field(record: dict, key: str) -> str:
    value = record[key]
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


def _parse_json_record(record: dict, direction: Direction) -> Reading:
    extra = record["Extra"]
    if extra not in JSON_FLAGS:
        raise ValueError(f"Extra flag must be T or N, got {extra!r}")

    day = datetime.strptime(_text_field(record, "Date"), "%Y-%m-%d").date()
    status = record.get("Status")
    if isinstance(status, bool) or not isinstance(status, (str, int, type(None))):
        raise ValueError(f"Status must be a number, got {status!r}")
    zone = record.get("Zone")

    return Reading(
        timestamp=hour_to_datetime(day, int(_text_field(record, "Hour"))),
        value=parse_decimal(_text_field(record, "EC")),
        direction=direction,
        balanced=JSON_FLAGS[extra],
        status=int(status) if status not in (None, "") else None,
        zone=str(zone) if zone is not None else None,
        zone_name=record.get("ZoneName"),
        tariff=record.get("Taryfa"),
    )


def parse_json_document(document: str, direction: Direction) -> List[Reading]:
    """Parse one per-direction JSON document.

    Any malformed record fails the whole document.

    Args:
        document: Raw JSON text
        direction: Direction the document was requested for

    Returns:
        List of readings (may be empty)

    Raises:
        TauronParseError: If the document or any record is malformed
    """
    readings = []
    for index, record in enumerate(_json_records(document)):
        try:
            readings.append(_parse_json_record(record, direction))
        except (KeyError, TypeError, ValueError) as e:
            raise TauronParseError(f"{direction.value} record {index}: {e}")
    return readings


def parse_json(imported: Optional[str], exported: Optional[str]) -> TauronData:
    """Parse the imported and exported JSON documents.

    A malformed document fails only its own direction: the error is kept
    in TauronData.errors and that batch is left empty.

    Raises:
        TauronParseError: If both documents are malformed
        NoReadingsError: If neither document holds a reading
    """
    logger.info("Parsing JSON entries")
    data = TauronData()

    for direction, document in ((Direction.IMPORTED, imported), (Direction.EXPORTED, exported)):
        if not document:
            continue
        try:
            data.batch(direction).extend(parse_json_document(document, direction))
        except TauronParseError as e:
            logger.error(f"Discarding {direction.value} data: {e}")
            data.errors[direction] = str(e)

    if len(data.errors) == len(Direction):
        raise TauronParseError("; ".join(data.errors.values()))
    if not data:
        raise NoReadingsError("No entries available in JSON documents")
    return data


def detect_format(content: str) -> str:
    """Return "json" or "csv" depending on the payload shape."""
    return "json" if content.lstrip("\ufeff \t\r\n").startswith(("{", "[")) else "csv"


def parse_payload(payloads: Dict[str, str], vocabulary: str = "full") -> TauronData:
    """Decode raw payloads as returned by TauronScraper.fetch.

    Args:
        payloads: Either {"csv": text} or {"imported": text, "exported": text}
        vocabulary: CSV category vocabulary

    Returns:
        Decoded TauronData
    """
    if Direction.IMPORTED.value in payloads or Direction.EXPORTED.value in payloads:
        return parse_json(
            payloads.get(Direction.IMPORTED.value),
            payloads.get(Direction.EXPORTED.value),
        )
    if "csv" not in payloads:
        raise TauronParseError(f"Unexpected payload keys: {sorted(payloads)}")
    return parse_csv(payloads["csv"], vocabulary=vocabulary)


def encode_json_record(reading: Reading) -> dict:
    """Encode a reading in the JSON document's record format."""
    day, hour = datetime_to_hour(reading.timestamp)
    record = {
        "EC": f"{reading.value}".replace(".", ","),
        "Date": day.strftime("%Y-%m-%d"),
        "Hour": str(hour),
        "Status": str(reading.status) if reading.status is not None else "0",
        "Extra": "T" if reading.balanced else "N",
    }
    if reading.zone is not None:
        record["Zone"] = reading.zone
    if reading.zone_name is not None:
        record["ZoneName"] = reading.zone_name
    if reading.tariff is not None:
        record["Taryfa"] = reading.tariff
    return record


def encode_json_document(readings: List[Reading]) -> str:
    """Encode readings as a JSON document in the provider's shape."""
    return json.dumps({"success": True, "data": {"allData": [encode_json_record(r) for r in readings]}})

"""Main entry point for elicznik.

This module handles:
- Parsing command line arguments
- Loading configuration from the INI file and .env overrides
- Coordinating scraper, parser, and database writer components
- Saving raw payloads to disk or decoding a local file instead of fetching
- Optional daemon mode: daily runs with APScheduler and Prometheus metrics

Without arguments it fetches the last two days of data and stores any
new or changed readings in the configured PostgreSQL database.
"""

import argparse
import logging
import sys
import time
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import find_dotenv, load_dotenv

from elicznik.config import Config, ConfigError, DEFAULT_CONFIG_PATH, load_config
from elicznik.database import DatabaseError, PostgresWriter
from elicznik.exporter import MetricsExporter
from elicznik.scraper import STRATEGIES, TauronError, TauronScraper, get_strategy
from elicznik.tauron_parser import Direction, TauronData, TauronParseError, detect_format, parse_payload

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_DAYS_BACK = 2


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse and validate command line arguments.

    `end` without `start`, or `end` earlier than `start`, exits with a usage error.
    """
    parser = argparse.ArgumentParser(
        prog="elicznik",
        description="Fetch Tauron eLicznik hourly data and store it in PostgreSQL. "
                    "Without arguments the last two days are fetched.",
    )
    parser.add_argument("-s", "--start", type=_parse_date,
                        help="Start date in format YYYY-MM-DD [default: two days ago]")
    parser.add_argument("-e", "--end", type=_parse_date,
                        help="End date in format YYYY-MM-DD [default: per `end_date` config]")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug info")
    parser.add_argument("-p", "--print", dest="print_entries", action="store_true",
                        help="Print all decoded entries")
    parser.add_argument("-i", "--input", type=Path,
                        help="Input file to decode instead of fetching from Tauron eLicznik")
    parser.add_argument("-o", "--output", type=Path,
                        help="Output file for the raw fetched data (database is still updated)")
    parser.add_argument("-c", "--config", type=Path, default=Path(DEFAULT_CONFIG_PATH),
                        help=f"Config file path [default: {DEFAULT_CONFIG_PATH}]")
    parser.add_argument("--strategy", choices=sorted(STRATEGIES), help="Fetch strategy, overrides config")
    parser.add_argument("--daemon", action="store_true",
                        help="Run daily at the configured hour and serve Prometheus metrics")

    args = parser.parse_args(argv)

    if args.end is not None:
        if args.start is None:
            parser.error("you cannot pass `end` date parameter without `start` date")
        if args.end < args.start:
            parser.error("`end` date is earlier than `start`")

    return args


def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def split_paths(path: Path) -> Dict[Direction, Path]:
    """Per-direction file names for a base path: data.json -> data.imported.json."""
    return {
        direction: path.with_name(f"{path.stem}.{direction.value}{path.suffix}")
        for direction in Direction
    }


def save_payloads(payloads: Dict[str, str], path: Path) -> None:
    """Write raw payloads to disk, one file per direction for JSON documents."""
    if "csv" in payloads:
        logger.info(f"Saving CSV data to file: {path}")
        path.write_text(payloads["csv"], encoding="utf-8")
        return

    for direction, split_path in split_paths(path).items():
        if direction.value in payloads:
            logger.info(f"Saving {direction.value} JSON data to file: {split_path}")
            split_path.write_text(payloads[direction.value], encoding="utf-8")


def load_payloads(path: Path) -> Dict[str, str]:
    """Read raw payloads written by save_payloads (or a provider CSV export).

    Accepts a CSV file, a per-direction JSON file, or the base path the
    per-direction JSON files were saved under.

    Raises:
        OSError: If no input file exists
        TauronParseError: If a JSON file is not a per-direction file
    """
    if path.exists():
        content = path.read_text(encoding="utf-8")
        if detect_format(content) == "csv":
            logger.info(f"Loading CSV data from input file: {path}")
            return {"csv": content}

        for direction in Direction:
            marker = f".{direction.value}"
            if path.stem.endswith(marker):
                path = path.with_name(path.stem[:-len(marker)] + path.suffix)
                break
        else:
            raise TauronParseError(f"{path}: JSON input must be a per-direction file "
                                   f"(*.imported{path.suffix} / *.exported{path.suffix})")

    payloads = {}
    for direction, split_path in split_paths(path).items():
        if split_path.exists():
            logger.info(f"Loading {direction.value} JSON data from input file: {split_path}")
            payloads[direction.value] = split_path.read_text(encoding="utf-8")

    if not payloads:
        raise OSError(f"Input file not found: {path}")
    return payloads


def fetch_payloads(args: argparse.Namespace, config: Config) -> Dict[str, str]:
    """Log in to Tauron eLicznik and download the requested date range."""
    tauron = config.tauron
    start = args.start or date.today() - timedelta(days=DEFAULT_DAYS_BACK)
    end = args.end
    if end is None and tauron.end_date == "today":
        end = date.today()

    scraper = TauronScraper(
        username=tauron.username,
        password=tauron.password,
        strategy=get_strategy(args.strategy or tauron.strategy, tauron.data_url),
        login_url=tauron.login_url,
        service_url=tauron.service_url,
        timeout=tauron.timeout,
    )
    payloads = scraper.scrape(start, end)

    if args.output:
        try:
            save_payloads(payloads, args.output)
        except OSError as e:
            logger.error(f"Unable to write file: {e}")

    return payloads


def store(data: TauronData, config: Config, metrics: Optional[MetricsExporter] = None) -> None:
    """Write both batches to PostgreSQL.

    Raises:
        DatabaseError: If the connection cannot be established
    """
    pg = config.postgres
    writer = PostgresWriter(
        host=pg.host,
        dbname=pg.dbname,
        username=pg.username,
        password=pg.password,
        port=pg.port,
        sslmode=pg.sslmode,
        procedure=pg.procedure,
    )
    logger.info("Trying to store it in the database...")
    with writer:
        results = writer.write_all(data)

    if metrics:
        metrics.update_results(results)


def run_pipeline(args: argparse.Namespace, config: Config,
                 metrics: Optional[MetricsExporter] = None) -> bool:
    """Execute the fetch, decode, and store flow.

    This function:
    1. Fetches raw payloads (or loads them from the input file)
    2. Decodes them into imported and exported batches
    3. Upserts both batches into PostgreSQL (when configured)
    4. Updates Prometheus metrics (daemon mode)

    Returns:
        True if the run succeeded, False otherwise
    """
    start_time = time.time()
    success = False

    try:
        if args.input:
            payloads = load_payloads(args.input)
        else:
            payloads = fetch_payloads(args, config)

        vocabulary = config.tauron.csv_vocabulary if config.tauron else "full"
        data = parse_payload(payloads, vocabulary=vocabulary)
        logger.info(f"Data parsed correctly, entries count: {len(data.imported)} for grid import, "
                    f"{len(data.exported)} for grid export")

        if args.print_entries:
            for reading in data.imported + data.exported:
                logger.info(f"{reading}")

        if metrics:
            metrics.update_readings(data)

        if config.postgres:
            store(data, config, metrics)
        else:
            logger.warning("No [postgres] config section, skipping database storage")

        for direction, error in data.errors.items():
            logger.error(f"Error decoding Tauron {direction.value} data: {error}")
        success = not data.errors

    except TauronError as e:
        logger.error(f"Error obtaining Tauron data: {e}")
    except TauronParseError as e:
        logger.error(f"Error decoding Tauron data: {e}")
    except DatabaseError as e:
        logger.error(f"Database error: {e}")
    except OSError as e:
        logger.error(f"Error loading input file: {e}")
    except Exception as e:
        logger.error(f"Run failed (unexpected error): {e}")

    if metrics:
        metrics.set_run_success(success, time.time() - start_time)
    return success


def run_daemon(args: argparse.Namespace, config: Config) -> int:
    """Run at startup, then daily at the configured hour (blocks)."""
    metrics = MetricsExporter(port=config.exporter.port)
    metrics.start()

    scheduler = BlockingScheduler()
    hour = config.exporter.schedule_hour
    scheduler.add_job(
        run_pipeline,
        trigger=CronTrigger(hour=hour, minute=0),
        args=[args, config, metrics],
        id="daily_import",
        name=f"Daily import at {hour}:00",
    )
    logger.info(f"Scheduled daily import at {hour}:00")

    logger.info("Running initial import at startup")
    run_pipeline(args, config, metrics)

    logger.info("Starting scheduler, press Ctrl+C to exit")
    try:
        scheduler.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        scheduler.shutdown()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    args = parse_args(argv)
    setup_logging(args.debug)
    logger.info("elicznik started")

    load_dotenv(find_dotenv(usecwd=True))

    logger.info(f"Using config file: {args.config}")
    try:
        config = load_config(str(args.config), require_tauron=args.input is None)
    except ConfigError as e:
        logger.error(f"Configuration failed: {e}")
        return 1

    if args.daemon:
        return run_daemon(args, config)

    return 0 if run_pipeline(args, config) else 1


if __name__ == "__main__":
    sys.exit(main())

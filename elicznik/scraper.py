"""Tauron eLicznik authentication and data download module.

This module handles:
- Authentication with the Tauron Dystrybucja login service
- Session management and cookie handling
- Downloading hourly meter data through one of the portal's request shapes

The portal has exposed its hourly data through several incompatible request
shapes over time. Each one is a FetchStrategy; the scraper logs in once and
hands its authenticated session to the selected strategy.
"""

import logging
import time
from datetime import date
from typing import Dict, Optional, Union

import requests
from bs4 import BeautifulSoup

from elicznik.tauron_parser import Direction

# Configure module logger
logger = logging.getLogger(__name__)

LOGIN_URL = "https://logowanie.tauron-dystrybucja.pl/login"
SERVICE_URL = "https://elicznik.tauron-dystrybucja.pl"

# Dates are sent in the portal's DD.MM.YYYY form
DATE_FORMAT = "%d.%m.%Y"


class TauronError(Exception):
    """Base exception for Tauron scraper errors."""
    pass


class TauronAuthError(TauronError):
    """Exception raised when authentication fails."""
    pass


class TauronDownloadError(TauronError):
    """Exception raised when data download fails."""
    pass


def _format_date(value: Optional[date]) -> Optional[str]:
    return value.strftime(DATE_FORMAT) if value is not None else None


class FetchStrategy:
    """One request shape for obtaining hourly data from the portal.

    Subclasses implement fetch(), which returns raw payloads keyed either
    by "csv" (single combined document) or by direction value ("imported",
    "exported") for per-direction documents.

    Attributes:
        url: Data endpoint used by this strategy
    """

    name = ""
    file_format = "csv"
    default_url = ""

    def __init__(self, url: Optional[str] = None):
        self.url = url or self.default_url

    def fetch(self, scraper: "TauronScraper", start_date: date,
              end_date: Optional[date] = None) -> Dict[str, str]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(url={self.url!r})"


class CsvExportStrategy(FetchStrategy):
    """Single CSV export with form[from]/form[to] parameters."""

    name = "csv"
    default_url = f"{SERVICE_URL}/energia/do/dane"

    def fetch(self, scraper, start_date, end_date=None):
        params = {
            "form[from]": _format_date(start_date),
            "form[type]": "godzin",
            "form[consum]": "1",
            "form[oze]": "1",
            "form[fileType]": "CSV",
        }
        if end_date is not None:
            params["form[to]"] = _format_date(end_date)

        response = scraper.post_data(self.url, params)
        return {"csv": response.text}


class ChartsStrategy(FetchStrategy):
    """Single CSV document from the older charts endpoint (dane[...] parameters)."""

    name = "charts"
    default_url = f"{SERVICE_URL}/index/charts"

    def fetch(self, scraper, start_date, end_date=None):
        params = {
            "dane[startDay]": _format_date(start_date),
            "dane[paramType]": "csv",
            "dane[checkOZE]": "on",
        }
        if end_date is not None:
            params["dane[endDay]"] = _format_date(end_date)

        response = scraper.post_data(self.url, params)
        return {"csv": response.text}


class ApiStrategy(FetchStrategy):
    """Two JSON documents, one request per direction sharing the session.

    The "type" parameter selects the direction: "consum" for energy drawn
    from the grid, "oze" for energy fed into it.
    """

    name = "api"
    file_format = "json"
    default_url = f"{SERVICE_URL}/energia/api"

    TYPES = {
        Direction.IMPORTED: "consum",
        Direction.EXPORTED: "oze",
    }

    def fetch(self, scraper, start_date, end_date=None):
        payloads = {}
        for direction, type_name in self.TYPES.items():
            params = {
                "from": _format_date(start_date),
                "profile": "full",
                "type": type_name,
            }
            if end_date is not None:
                params["to"] = _format_date(end_date)

            logger.info(f"Requesting {direction.value} data")
            response = scraper.post_data(self.url, params)
            payloads[direction.value] = response.text
        return payloads


STRATEGIES = {
    ApiStrategy.name: ApiStrategy,
    CsvExportStrategy.name: CsvExportStrategy,
    ChartsStrategy.name: ChartsStrategy,
}


def get_strategy(name: str, url: Optional[str] = None) -> FetchStrategy:
    """Create a fetch strategy by name.

    Raises:
        ValueError: If the name is not a known strategy
    """
    try:
        return STRATEGIES[name](url)
    except KeyError:
        raise ValueError(f"Unknown fetch strategy {name!r}, expected one of: {', '.join(STRATEGIES)}")


class TauronScraper:
    """Scraper for the Tauron eLicznik meter data portal.

    Handles cookie-based authentication against the Tauron login service and
    downloading hourly data through a FetchStrategy. Every scraper owns a
    fresh requests session; nothing is kept between instances.

    Attributes:
        username: Portal login username
        password: Portal login password
        strategy: Request shape used to download data
    """

    def __init__(
        self,
        username: str,
        password: str,
        strategy: Union[FetchStrategy, str] = "api",
        login_url: str = LOGIN_URL,
        service_url: str = SERVICE_URL,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the scraper with credentials.

        Args:
            username: Portal login username
            password: Portal login password
            strategy: FetchStrategy instance or strategy name
            login_url: Login service URL
            service_url: Service the login grants access to
            timeout: Per-request timeout in seconds
            session: Optional session (a new one is created by default)
        """
        self.username = username
        self.password = password
        self.strategy = get_strategy(strategy) if isinstance(strategy, str) else strategy
        self.login_url = login_url
        self.service_url = service_url
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self._authenticated = False

        # Set common headers
        self.session.headers.update({
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "pl-PL,pl;q=0.9,en;q=0.8",
        })

    def _extract_form_data(self, html: str) -> dict:
        """Extract all hidden form inputs from HTML.

        Args:
            html: HTML content containing the form

        Returns:
            Dictionary of form field names to values
        """
        soup = BeautifulSoup(html, "html.parser")
        form_data = {}

        for inp in soup.find_all("input", {"type": "hidden"}):
            name = inp.get("name")
            if name:
                form_data[name] = inp.get("value", "")

        logger.debug(f"Extracted {len(form_data)} hidden form fields")
        return form_data

    def _is_login_page(self, html: str) -> bool:
        """Check whether a response is the login form (credentials rejected)."""
        soup = BeautifulSoup(html, "html.parser")
        return soup.find("input", {"name": "password"}) is not None

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Execute a single request, failing on transport errors and non-2xx.

        No retry is attempted; the caller decides whether to abandon the run.

        Raises:
            TauronDownloadError: On any transport failure or non-success status
        """
        started = time.time()
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TauronDownloadError(f"{method} {url} failed: {e}")

        logger.debug(f"{method} {url} -> {response.status_code}, "
                     f"response time: {(time.time() - started) * 1000:.0f} ms")
        return response

    def post_data(self, url: str, params: Dict[str, str]) -> requests.Response:
        """POST form-encoded parameters to a data endpoint with the session.

        Raises:
            TauronDownloadError: If not authenticated or the request fails
        """
        if not self._authenticated:
            raise TauronDownloadError("Not authenticated - call login() first")

        logger.debug(f"Requesting {url} with {params}")
        return self._request("POST", url, data=params)

    def login(self) -> bool:
        """Authenticate with the Tauron login service.

        Performs the login process:
        1. GET login page to establish the session cookies
        2. POST credentials (plus any hidden form fields) reusing the session

        Returns:
            True if authentication succeeded

        Raises:
            TauronAuthError: If authentication fails
        """
        logger.info(f"Logging in as {self.username}")

        try:
            # Step 1: GET login page to establish the session
            response = self._request("GET", self.login_url)
            form_data = self._extract_form_data(response.text)

            # Step 2: POST login credentials
            form_data.update({
                "username": self.username,
                "password": self.password,
                "service": self.service_url,
            })
            response = self._request("POST", self.login_url, data=form_data, allow_redirects=True)
        except TauronDownloadError as e:
            raise TauronAuthError(f"Login failed: {e}")

        if self._is_login_page(response.text):
            raise TauronAuthError("Login failed - credentials rejected, login form returned")

        self._authenticated = True
        logger.info("Authentication successful")
        return True

    def fetch(self, start_date: date, end_date: Optional[date] = None) -> Dict[str, str]:
        """Download raw payloads for a date range using the strategy.

        Args:
            start_date: First day of the range (inclusive)
            end_date: Last day of the range (inclusive); None leaves it to the portal

        Returns:
            Raw payloads: {"csv": text} or {"imported": text, "exported": text}

        Raises:
            TauronDownloadError: If download fails or returns an empty payload
        """
        logger.info(f"Requesting data with {self.strategy.name} strategy, "
                    f"start date: {start_date}, end date: {end_date or 'portal default'}")

        payloads = self.strategy.fetch(self, start_date, end_date)

        for key, content in payloads.items():
            if not content or not content.strip():
                raise TauronDownloadError(f"No data returned for {key}")
            logger.info(f"Downloaded {len(content)} bytes of {key} data")

        return payloads

    def scrape(self, start_date: date, end_date: Optional[date] = None) -> Dict[str, str]:
        """Complete scrape flow: authenticate and download data.

        Raises:
            TauronAuthError: If authentication fails
            TauronDownloadError: If download fails
        """
        started = time.time()
        self.login()
        payloads = self.fetch(start_date, end_date)
        logger.info(f"Total scraping time: {(time.time() - started) * 1000:.0f} ms")
        return payloads


def main():
    """Try the scraper against the live portal with credentials from .env."""
    import os
    from datetime import timedelta

    from dotenv import load_dotenv

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    load_dotenv()

    scraper = TauronScraper(
        os.getenv("TAURON_USERNAME", "your_login"),
        os.getenv("TAURON_PASSWORD", "YOUR_PASSWORD"),
        strategy=os.getenv("TAURON_STRATEGY", "api"),
    )

    try:
        payloads = scraper.scrape(date.today() - timedelta(days=2), date.today())
    except TauronError as e:
        print(f"Scrape FAILED: {e}")
        return False

    for key, content in payloads.items():
        print(f"{key}: {len(content)} bytes, starts with {content[:80]!r}")
    return True


if __name__ == "__main__":
    import sys
    sys.exit(0 if main() else 1)

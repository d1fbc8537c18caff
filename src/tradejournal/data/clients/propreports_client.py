# === MODULE PURPOSE ===
# PropReports HTTP API client.
# Downloads broker fills as CSV and hands them to trade reconstruction.

# === DEPENDENCIES ===
# - httpx: Async HTTP client
# - reconstruction: Fills -> trades

# === KEY CONCEPTS ===
# - Session token: action=login returns a plain-text token, action=logout expires it
# - Fills export: action=fills returns CSV with a header row and a
#   "Page N/M" trailer row when more pages exist
# - Credentials come from the caller per request, nothing is stored

from __future__ import annotations

import csv
import io
import logging
import re
from datetime import date, timedelta

import httpx

from tradejournal.trading.fills import is_page_trailer
from tradejournal.trading.models import ReconstructedTrade
from tradejournal.trading.reconstruction import reconstruct_from_rows

logger = logging.getLogger(__name__)

_PAGE_TRAILER_RE = re.compile(r"Page\s+(\d+)\s*/\s*(\d+)")


class PropReportsError(Exception):
    """Exception for PropReports API failures."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PropReportsClient:
    """
    PropReports API client.

    Usage:
        async with PropReportsClient("demo.propreports.com", "user", "pass") as client:
            trades = await client.fetch_trades("2026-01-01", "2026-01-31")
    """

    API_PATH = "/api.php"

    # All accounts visible to the login
    ALL_ACCOUNTS_GROUP = "-2"

    DEFAULT_TIMEOUT = 30.0
    DEFAULT_MAX_PAGES = 50

    def __init__(
        self,
        site: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_pages: int = DEFAULT_MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            site: PropReports host, e.g. "demo.propreports.com".
            username: Login name.
            password: Login password.
            timeout: Per-request timeout in seconds.
            max_pages: Upper bound on fills pages followed.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._base_url = f"https://{site}"
        self._username = username
        self._password = password
        self._timeout = timeout
        self._max_pages = max_pages
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._token: str | None = None

    @property
    def api_url(self) -> str:
        return f"{self._base_url}{self.API_PATH}"

    @property
    def is_logged_in(self) -> bool:
        return self._token is not None

    async def start(self) -> None:
        """Create the underlying HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )

    async def stop(self) -> None:
        """Log out (if needed) and close the HTTP client."""
        await self.logout()
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PropReportsClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _post(self, data: dict[str, str]) -> httpx.Response:
        await self.start()
        assert self._client is not None  # For type checker

        action = data.get("action", "")
        try:
            response = await self._client.post(self.api_url, data=data)
        except httpx.HTTPError as e:
            raise PropReportsError(f"PropReports {action} request failed: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise PropReportsError(
                f"PropReports {action} failed with status {response.status_code}: "
                f"{response.text.strip()}",
                status_code=response.status_code,
            )
        return response

    async def login(self) -> str:
        """
        Authenticate and store the session token.

        Raises:
            PropReportsError: On HTTP failure, non-200 status or an empty token.
        """
        response = await self._post(
            {"action": "login", "user": self._username, "password": self._password}
        )
        token = response.text.strip()
        if not token:
            raise PropReportsError("Received empty token from PropReports")

        self._token = token
        logger.info(f"Logged in to PropReports {self._base_url} as {self._username}")
        return token

    async def logout(self) -> None:
        """Expire the session token. Failures are logged, not raised."""
        if self._token is None:
            return

        token, self._token = self._token, None
        try:
            await self._post({"action": "logout", "token": token})
        except PropReportsError as e:
            logger.warning(f"PropReports logout failed: {e}")

    async def fetch_fill_rows(
        self, from_date: str | None = None, to_date: str | None = None
    ) -> list[list[str]]:
        """
        Download raw fill rows for a date range.

        Args:
            from_date: YYYY-MM-DD, defaults to one month ago.
            to_date: YYYY-MM-DD, defaults to today.

        Returns:
            CSV rows without header rows (trailer rows are left for the
            fill parser to skip).
        """
        today = date.today()
        from_date = from_date or _one_month_before(today).isoformat()
        to_date = to_date or today.isoformat()

        if not self.is_logged_in:
            await self.login()
        assert self._token is not None  # For type checker

        rows: list[list[str]] = []
        page = 1
        while True:
            response = await self._post(
                {
                    "action": "fills",
                    "token": self._token,
                    "groupId": self.ALL_ACCOUNTS_GROUP,
                    "startDate": from_date,
                    "endDate": to_date,
                    "page": str(page),
                }
            )
            records = list(csv.reader(io.StringIO(response.text)))
            rows.extend(records[1:])

            total_pages = _total_pages(records)
            if total_pages is None or page >= total_pages:
                break
            if page >= self._max_pages:
                logger.warning(
                    f"PropReports fills truncated at page {page} of {total_pages}"
                )
                break
            page += 1

        logger.info(
            f"Fetched {len(rows)} fill rows from PropReports ({from_date} to {to_date}, "
            f"{page} page(s))"
        )
        return rows

    async def fetch_trades(
        self, from_date: str | None = None, to_date: str | None = None
    ) -> list[ReconstructedTrade]:
        """
        Download fills and reconstruct trades.

        Logs in for the duration of the call and always logs out afterwards.
        """
        await self.login()
        try:
            rows = await self.fetch_fill_rows(from_date, to_date)
        finally:
            await self.logout()

        trades = reconstruct_from_rows(rows)
        logger.info(f"Reconstructed {len(trades)} trades from {len(rows)} PropReports rows")
        return trades


def _total_pages(records: list[list[str]]) -> int | None:
    """Read the page count from the 'Page N/M' trailer, if present."""
    for record in reversed(records):
        if not record:
            continue
        if is_page_trailer(record):
            match = _PAGE_TRAILER_RE.search(record[0])
            return int(match.group(2)) if match else None
        return None
    return None


def _one_month_before(day: date) -> date:
    month = day.month - 1 or 12
    year = day.year - 1 if day.month == 1 else day.year
    # Clamp e.g. March 31 -> February 28/29
    while True:
        try:
            return day.replace(year=year, month=month)
        except ValueError:
            day -= timedelta(days=1)

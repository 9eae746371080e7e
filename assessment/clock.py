"""
Trusted time sources.

The countdown is seeded from a server clock rather than the candidate's
machine. HttpDateClock reads the Date header of an HTTP response.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

import httpx

from .errors import EnvironmentFault


class SystemClock:
    """Local clock. Used when no time server is configured."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class HttpDateClock:
    """Server time from the Date header of a HEAD request."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self.client = client

    def now(self) -> datetime:
        """
        Fetch the current server time.

        Raises:
            EnvironmentFault: If the server is unreachable or sends no usable Date header
        """
        try:
            if self.client is not None:
                response = self.client.head(self.url, timeout=self.timeout)
            else:
                with httpx.Client(follow_redirects=True) as client:
                    response = client.head(self.url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise EnvironmentFault(f"Time server unreachable: {e}")

        header = response.headers.get("date")
        if not header:
            raise EnvironmentFault(f"Time server response has no Date header (HTTP {response.status_code})")

        try:
            server_time = parsedate_to_datetime(header)
        except (TypeError, ValueError) as e:
            raise EnvironmentFault(f"Unparseable Date header '{header}': {e}")

        if server_time.tzinfo is None:
            server_time = server_time.replace(tzinfo=timezone.utc)
        return server_time


def get_server_time(source=None, session_logger: Optional[Callable[[str, str], None]] = None) -> datetime:
    """
    Read the trusted clock once.

    Falls back to the local clock when the server cannot be reached; the
    fallback is logged so it can be reviewed.
    """
    if source is None:
        return SystemClock().now()
    try:
        return source.now()
    except EnvironmentFault as e:
        if session_logger:
            session_logger("CLOCK_FALLBACK", f"Using local clock: {e}")
        return SystemClock().now()

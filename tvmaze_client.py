"""
TVMaze show index client.

Downloads https://api.tvmaze.com/shows?page=N page by page. TVMaze answers
404 past the last page, so a non-success status or an empty page ends the
download.
"""

import logging
from typing import Iterator, List, Optional

from constants import DOWNLOAD_PROGRESS_EVERY, RATE_LIMIT_TVMAZE, TVMAZE_API_BASE
from http_client import RateLimitedSession, SessionAwareComponent, TokenBucketRateLimiter
from metrics import metrics
from models import TVMazeShow

logger = logging.getLogger(__name__)


class TVMazeClient(SessionAwareComponent):
    """Client for the public TVMaze show index."""

    def __init__(
        self,
        session: RateLimitedSession = None,
        base_url: str = TVMAZE_API_BASE,
        requests_per_second: int = RATE_LIMIT_TVMAZE,
    ):
        """
        Initialize TVMaze client.

        Args:
            session: Optional shared session. A new one is rate limited to
                requests_per_second.
            base_url: API root
            requests_per_second: Limit for a newly created session
        """
        self.base_url = base_url.rstrip("/")
        self.init_session(
            session,
            timeout=60.0,
            limiter=TokenBucketRateLimiter(requests_per_second),
        )

    def get_page(self, page: int) -> Optional[List[TVMazeShow]]:
        """
        Fetch one page of the show index.

        Returns:
            Shows on the page, or None when the page does not exist
        """
        with metrics.timer("tvmaze_page_duration_ms"):
            response = self.session.get(f"{self.base_url}/shows", params={"page": page})

        if not response.ok:
            logger.debug(f"TVMaze page {page} returned HTTP {response.status_code}, stopping")
            return None

        shows = []
        for item in response.json() or []:
            try:
                shows.append(TVMazeShow.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed TVMaze record on page {page}: {e}")
        metrics.inc("tvmaze_pages")
        return shows

    def iter_pages(self, start_page: int = 0) -> Iterator[List[TVMazeShow]]:
        """Yield pages from start_page until an empty or missing page."""
        page = start_page
        while True:
            shows = self.get_page(page)
            if not shows:
                return
            yield shows
            page += 1

    def fetch_all_shows(self, start_page: int = 0) -> List[TVMazeShow]:
        """
        Download the whole show index.

        Args:
            start_page: First page to fetch (to resume an interrupted run)

        Returns:
            All shows in download order

        Raises:
            requests.RequestException: on connection errors
        """
        all_shows: List[TVMazeShow] = []
        pages = 0
        for shows in self.iter_pages(start_page):
            all_shows.extend(shows)
            pages += 1
            if pages % DOWNLOAD_PROGRESS_EVERY == 0:
                logger.info(f"Downloaded {len(all_shows)} shows ({pages} pages)...")
        return all_shows

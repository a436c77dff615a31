"""
Per-show upsert worker.

Decides create / update / skip for one TVMaze show and performs it against
the Heartcore Management API:

    indexed + skip policy    -> SKIPPED, no remote call
    indexed + update policy  -> PUT content/{key} (document without showImage)
    not indexed              -> POST content (multipart with poster when the
                                poster can be fetched, plain JSON otherwise)

The worker never raises. Every outcome, including failures, is returned as
an UpsertResult so the pipeline can aggregate without exception handling.
"""

import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from constants import (
    CONTENT_TYPE_ALIAS,
    GENRE_ELEMENT_VALUE_ALIAS,
    INVARIANT,
    PROP_GENRES,
    PROP_IMAGE,
    PROP_SHOW_ID,
    PROP_SUMMARY,
    ExistingPolicy,
    GenreFormat,
    SummaryFormat,
)
from heartcore_client import HeartcoreApiError
from http_client import TokenBucketRateLimiter
from images import FetchedImage, ImageFetcher, choose_image_url, transcode
from logging_config import show_context
from metrics import metrics
from models import IndexEntry, TVMazeShow, UpsertOutcome, UpsertResult
from text_utils import join_genres, summary_to_text

logger = logging.getLogger(__name__)


class MigrationCancelled(Exception):
    """The run's cancellation signal was set while a show was in flight."""


class UpsertService:
    """
    Create or update Heartcore content for TVMaze shows.

    One instance is shared by all worker threads; it holds no per-show state.

    Under the update policy the PUT carries the rebuilt document without
    showImage and no poster is fetched. A PUT replaces the stored document,
    so a poster attached at creation is not carried over; use the skip
    policy when existing posters must be kept.
    """

    def __init__(
        self,
        client,
        options,
        limiter: TokenBucketRateLimiter,
        index,
        created_keys,
        image_fetcher: Optional[ImageFetcher] = None,
        translator=None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            client: HeartcoreClient (or anything with the same methods)
            options: HeartcoreOptions
            limiter: Token bucket taken before every management call
            index: ExistingContentIndex shared by all workers
            created_keys: Collection with add(key) receiving new content keys
            image_fetcher: Poster downloader; None disables posters
            translator: Optional Translator for summaries
            cancel_event: Run cancellation signal
        """
        self.client = client
        self.options = options
        self.limiter = limiter
        self.index = index
        self.created_keys = created_keys
        self.image_fetcher = image_fetcher
        self.translator = translator
        self.cancel_event = cancel_event or threading.Event()

    # -------------------------------------------------------------------------
    # Payload construction
    # -------------------------------------------------------------------------

    def _summary_for(self, show: TVMazeShow, culture: str) -> str:
        if self.options.summary_format == SummaryFormat.TEXT:
            summary = summary_to_text(show.summary)
            text_type = "plain"
        else:
            summary = show.summary or ""
            text_type = "html"

        if self.translator is not None and summary:
            summary = self.translator.translate(summary, culture, text_type=text_type) or summary
        return summary

    def _genre_blocks(self, genres: Tuple[str, ...]) -> List[Dict[str, Any]]:
        """One Block List element per genre, with a variant per culture."""
        blocks = []
        for genre in genres:
            key = uuid.uuid4()
            blocks.append({
                "contentTypeKey": self.options.genre_element_type_key,
                "udi": f"umb://element/{key.hex}",
                "key": str(key),
                "variants": [
                    {
                        "culture": culture,
                        "name": genre,
                        "values": [{"alias": GENRE_ELEMENT_VALUE_ALIAS, "value": genre}],
                    }
                    for culture in self.options.import_cultures
                ],
            })
        return blocks

    def _genre_value(self, show: TVMazeShow) -> Optional[Any]:
        """The showGenres value, or None when the show has no genres."""
        genres = tuple(g.strip() for g in show.genres if g and g.strip())
        if not genres:
            return None
        if self.options.genre_format == GenreFormat.BLOCKS:
            return self._genre_blocks(genres)
        return join_genres(genres)

    def build_payload(self, show: TVMazeShow, image_filename: Optional[str] = None) -> Dict[str, Any]:
        """
        Build the Management API document for a show.

        Invariant properties: showId, showGenres (omitted when empty) and
        showImage (only when a file is attached). Variant properties: name
        and showSummary, one entry per import culture even when identical.
        """
        cultures = self.options.import_cultures
        payload: Dict[str, Any] = {
            "contentTypeAlias": CONTENT_TYPE_ALIAS,
            "parentId": self.options.shows_parent_key,
            "sortOrder": 0,
            PROP_SHOW_ID: {INVARIANT: show.source_id},
            "name": {culture: show.display_name for culture in cultures},
            PROP_SUMMARY: {culture: self._summary_for(show, culture) for culture in cultures},
        }

        genres = self._genre_value(show)
        if genres is not None:
            payload[PROP_GENRES] = {INVARIANT: genres}

        if image_filename:
            payload[PROP_IMAGE] = {INVARIANT: image_filename}

        return payload

    # -------------------------------------------------------------------------
    # Remote calls
    # -------------------------------------------------------------------------

    def _call(self, func: Callable, *args, **kwargs):
        """Take a rate-limit token, then issue one management call."""
        if not self.limiter.acquire(self.cancel_event):
            raise MigrationCancelled("cancelled before request")
        return func(*args, **kwargs)

    def _fetch_poster(self, show: TVMazeShow) -> Optional[FetchedImage]:
        if self.image_fetcher is None:
            return None
        url = choose_image_url(show.image, self.options.image_preferred_size)
        if not url:
            return None

        image = self.image_fetcher.fetch(url, self.cancel_event)
        if image is None or not self.options.resize_images:
            return image

        try:
            return transcode(
                image,
                max_width=self.options.image_max_width,
                max_height=self.options.image_max_height,
                fmt=self.options.image_transcode_format,
                quality=self.options.image_quality,
            )
        except (OSError, ValueError) as e:
            logger.debug(f"Transcoding {image.filename} failed, uploading original: {e}")
            return image

    def _create(self, show: TVMazeShow) -> Tuple[str, bool]:
        """
        Create content, attaching the poster when possible.

        A failed poster download or a rejected multipart request falls back
        to a plain create, so a broken poster never blocks the show.

        Returns:
            Tuple of (new key, image attached)
        """
        payload = self.build_payload(show)
        image = self._fetch_poster(show)
        if image is not None:
            with_file = dict(payload)
            with_file[PROP_IMAGE] = {INVARIANT: image.filename}
            try:
                key = self._call(
                    self.client.create_content_with_file,
                    with_file,
                    PROP_IMAGE,
                    INVARIANT,
                    image.filename,
                    image.content_type,
                    image.data,
                )
                return key, True
            except HeartcoreApiError as e:
                # rejected by Heartcore, nothing was created
                logger.warning(f"Poster upload for '{show.display_name}' failed, creating without image: {e}")
                metrics.inc("image_attach_fallbacks")

        key = self._call(self.client.create_content, payload)
        return key, False

    # -------------------------------------------------------------------------
    # Worker entry point
    # -------------------------------------------------------------------------

    def _process(self, show: TVMazeShow) -> UpsertResult:
        name = show.display_name
        existing: Optional[IndexEntry] = self.index.lookup(show.source_id)

        if existing is not None:
            if self.options.existing_policy == ExistingPolicy.SKIP:
                return UpsertResult(show.id, name, UpsertOutcome.SKIPPED, key=existing.key)

            self._call(self.client.update_content, existing.key, self.build_payload(show))
            return UpsertResult(show.id, name, UpsertOutcome.UPDATED, key=existing.key)

        key, image_attached = self._create(show)
        self.index.try_add(show.source_id, key, name)
        self.created_keys.add(key)
        return UpsertResult(
            show.id, name, UpsertOutcome.CREATED, key=key, image_attached=image_attached
        )

    def upsert(self, show: TVMazeShow) -> UpsertResult:
        """
        Process one show. Never raises.

        Returns:
            UpsertResult with outcome CREATED, UPDATED, SKIPPED or FAILED
        """
        with show_context(show.id):
            if self.cancel_event.is_set():
                return UpsertResult(show.id, show.display_name, UpsertOutcome.FAILED, reason="cancelled")

            try:
                result = self._process(show)
            except MigrationCancelled:
                logger.debug(f"Cancelled: {show.id} - {show.display_name}")
                result = UpsertResult(show.id, show.display_name, UpsertOutcome.FAILED, reason="cancelled")
            except Exception as e:
                logger.error(
                    f"Failed: {show.id} - {show.display_name}: {e}",
                    extra={"show_name": show.display_name, "outcome": UpsertOutcome.FAILED.value},
                )
                result = UpsertResult(show.id, show.display_name, UpsertOutcome.FAILED, reason=str(e))

            metrics.inc("upserts", labels={"outcome": result.outcome.value})
            if result.outcome != UpsertOutcome.FAILED:
                logger.debug(
                    f"{result.outcome.value}: {show.display_name}",
                    extra={"show_name": show.display_name, "outcome": result.outcome.value},
                )
            return result

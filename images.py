"""
Poster download and optional transcoding.

Images are fetched on their own session so large transfers never queue
behind Management API calls.
"""

import io
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests
from PIL import Image, UnidentifiedImageError

from constants import (
    IMAGE_FETCH_ATTEMPTS,
    IMAGE_RETRY_BACKOFF,
    IMAGE_TIMEOUT,
    ImageFormat,
    ImageSize,
)
from http_client import RateLimitedSession, SessionAwareComponent
from metrics import metrics
from models import ShowImage
from text_utils import filename_from_url, replace_extension

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedImage:
    """Downloaded poster ready for a multipart upload."""
    filename: str
    content_type: str
    data: bytes


def choose_image_url(image: Optional[ShowImage], preferred: ImageSize = ImageSize.MEDIUM) -> Optional[str]:
    """
    Pick the poster URL by size preference, falling back to the other size.

    Medium is the default to keep uploads small.
    """
    if image is None:
        return None
    if preferred == ImageSize.ORIGINAL:
        url = image.original or image.medium
    else:
        url = image.medium or image.original
    if url and url.strip():
        return url.strip()
    return None


class ImageFetcher(SessionAwareComponent):
    """
    Download posters with a small linear-backoff retry.

    A non-success HTTP status is final (no retry); connection errors and
    timeouts are retried up to `attempts` times.
    """

    def __init__(
        self,
        session: RateLimitedSession = None,
        attempts: int = IMAGE_FETCH_ATTEMPTS,
        backoff: float = IMAGE_RETRY_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
        pool_size: int = 20,
    ):
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self._sleep = sleep
        # attempts are counted here, so transport retries are off
        self.init_session(session, timeout=IMAGE_TIMEOUT, pool_size=pool_size, max_retries=0)

    def _wait(self, seconds: float, cancel_event: Optional[threading.Event]) -> bool:
        """Sleep between attempts. Returns False if the run was cancelled."""
        if cancel_event is not None:
            return not cancel_event.wait(seconds)
        self._sleep(seconds)
        return True

    def fetch(self, url: str, cancel_event: Optional[threading.Event] = None) -> Optional[FetchedImage]:
        """
        Download an image.

        Args:
            url: Poster URL
            cancel_event: Optional run cancellation signal

        Returns:
            FetchedImage, or None when the image is unavailable
        """
        for attempt in range(1, self.attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                return None
            try:
                with metrics.timer("image_fetch_duration_ms"):
                    response = self.session.get(url)
            except requests.RequestException as e:
                logger.debug(f"Image fetch attempt {attempt}/{self.attempts} failed for {url}: {e}")
                if attempt < self.attempts and self._wait(self.backoff * attempt, cancel_event):
                    continue
                break

            if not response.ok:
                logger.debug(f"Image {url} returned HTTP {response.status_code}, not retrying")
                metrics.inc("image_fetch", labels={"status": "http_error"})
                return None

            content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
            metrics.inc("image_fetch", labels={"status": "success"})
            return FetchedImage(
                filename=filename_from_url(url),
                content_type=content_type or "image/jpeg",
                data=response.content,
            )

        metrics.inc("image_fetch", labels={"status": "exhausted"})
        return None


def transcode(
    image: FetchedImage,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
    fmt: ImageFormat = ImageFormat.JPG,
    quality: int = 80,
) -> FetchedImage:
    """
    Downscale an image to fit max_width x max_height and re-encode it.

    Aspect ratio is preserved and images are never enlarged. Without any
    maximum dimension, or if the bytes cannot be decoded, the image is
    returned unchanged.
    """
    if not (max_width or max_height):
        return image

    try:
        with Image.open(io.BytesIO(image.data)) as source:
            picture = source.copy()
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Could not decode {image.filename} for transcoding: {e}")
        return image

    bound_w = max_width or picture.width
    bound_h = max_height or picture.height
    picture.thumbnail((bound_w, bound_h))

    if fmt == ImageFormat.JPG and picture.mode not in ("RGB", "L"):
        picture = picture.convert("RGB")

    buffer = io.BytesIO()
    save_kwargs = {"quality": quality, "optimize": True} if fmt == ImageFormat.JPG else {"optimize": True}
    picture.save(buffer, format=fmt.pil_format, **save_kwargs)

    return FetchedImage(
        filename=replace_extension(image.filename, fmt.value),
        content_type=fmt.content_type,
        data=buffer.getvalue(),
    )

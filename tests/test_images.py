import io
import threading
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image

from constants import ImageFormat, ImageSize
from images import FetchedImage, ImageFetcher, choose_image_url, transcode
from models import ShowImage


def image_bytes(size=(400, 600), mode="RGBA", fmt="PNG"):
    buffer = io.BytesIO()
    Image.new(mode, size, (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


def ok_response(content=b"jpeg", content_type="image/jpeg; charset=binary"):
    response = MagicMock()
    response.ok = True
    response.status_code = 200
    response.headers = {"Content-Type": content_type}
    response.content = content
    return response


class TestChooseImageUrl:
    def test_prefers_medium_by_default(self):
        image = ShowImage(medium="https://x/m.jpg", original="https://x/o.jpg")

        assert choose_image_url(image) == "https://x/m.jpg"
        assert choose_image_url(image, ImageSize.ORIGINAL) == "https://x/o.jpg"

    def test_falls_back_to_other_size(self):
        assert choose_image_url(ShowImage(original="https://x/o.jpg")) == "https://x/o.jpg"
        assert choose_image_url(ShowImage(medium="https://x/m.jpg"), ImageSize.ORIGINAL) == "https://x/m.jpg"

    def test_no_image(self):
        assert choose_image_url(None) is None
        assert choose_image_url(ShowImage(medium="  ")) is None


class TestImageFetcher:
    """Test poster download retries"""

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def sleeps(self):
        return []

    @pytest.fixture
    def fetcher(self, session, sleeps):
        return ImageFetcher(session=session, attempts=3, backoff=0.5, sleep=sleeps.append)

    def test_success(self, fetcher, session):
        session.get.return_value = ok_response()

        image = fetcher.fetch("https://static.tvmaze.com/uploads/images/medium_portrait/81/202627.jpg")

        assert image == FetchedImage("202627.jpg", "image/jpeg", b"jpeg")

    def test_http_error_is_not_retried(self, fetcher, session, sleeps):
        response = MagicMock(ok=False, status_code=404)
        session.get.return_value = response

        assert fetcher.fetch("https://x/p.jpg") is None
        assert session.get.call_count == 1
        assert sleeps == []

    def test_connection_errors_retry_with_linear_backoff(self, fetcher, session, sleeps):
        session.get.side_effect = [requests.ConnectionError("reset"), requests.Timeout("slow"), ok_response()]

        image = fetcher.fetch("https://x/p.jpg")

        assert image is not None
        assert session.get.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_gives_up_after_attempts(self, fetcher, session, sleeps):
        session.get.side_effect = requests.ConnectionError("down")

        assert fetcher.fetch("https://x/p.jpg") is None
        assert session.get.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_cancelled_fetch_returns_none(self, fetcher, session):
        cancel = threading.Event()
        cancel.set()

        assert fetcher.fetch("https://x/p.jpg", cancel) is None
        session.get.assert_not_called()

    def test_missing_content_type_defaults_to_jpeg(self, fetcher, session):
        session.get.return_value = ok_response(content_type="")

        assert fetcher.fetch("https://x/p.jpg").content_type == "image/jpeg"


class TestTranscode:
    """Test resizing posters with Pillow"""

    def test_downscales_preserving_aspect(self):
        source = FetchedImage("202627.png", "image/png", image_bytes((400, 600)))

        result = transcode(source, max_width=100, max_height=100, fmt=ImageFormat.JPG, quality=70)

        assert result.filename == "202627.jpg"
        assert result.content_type == "image/jpeg"
        with Image.open(io.BytesIO(result.data)) as picture:
            assert picture.format == "JPEG"
            assert picture.height == 100
            assert picture.width < 100

    def test_never_enlarges(self):
        source = FetchedImage("small.jpg", "image/jpeg", image_bytes((50, 40), mode="RGB", fmt="JPEG"))

        result = transcode(source, max_width=300, fmt=ImageFormat.PNG)

        assert result.filename == "small.png"
        with Image.open(io.BytesIO(result.data)) as picture:
            assert picture.size == (50, 40)

    def test_without_limits_returns_original(self):
        source = FetchedImage("a.jpg", "image/jpeg", b"raw")

        assert transcode(source) is source

    def test_undecodable_bytes_return_original(self):
        source = FetchedImage("a.jpg", "image/jpeg", b"not an image")

        assert transcode(source, max_width=100) is source

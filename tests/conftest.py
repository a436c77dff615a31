import threading
import uuid

import pytest

from config import HeartcoreOptions
from constants import INVARIANT, PROP_SHOW_ID
from heartcore_client import HeartcoreApiError
from http_client import TokenBucketRateLimiter
from metrics import metrics
from models import IndexEntry, ShowImage, TVMazeShow

PARENT_KEY = "0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0"


class FakeHeartcoreClient:
    """
    In-memory stand-in for HeartcoreClient.

    Records every call and keeps created content so a second run can list
    it as existing children.
    """

    def __init__(self, existing=None, fail_create_ids=(), file_error_status=None, fail_publish_keys=()):
        self._lock = threading.Lock()
        self.children = dict(existing or {})
        self.fail_create_ids = {str(i) for i in fail_create_ids}
        self.file_error_status = file_error_status
        self.fail_publish_keys = set(fail_publish_keys)

        self.creates = []
        self.file_creates = []
        self.updates = []
        self.publishes = []
        self.deleted = []
        self.closed = False

    def _store(self, payload):
        show_id = payload[PROP_SHOW_ID][INVARIANT]
        if show_id in self.fail_create_ids:
            raise HeartcoreApiError(500, "Internal Server Error", "POST", "content", body="boom")
        key = str(uuid.uuid4())
        name = next(iter(payload["name"].values()))
        self.children[show_id] = IndexEntry(key=key, name=name)
        return key

    def validate_parent(self, parent_key):
        return None

    def get_children_index(self, parent_key):
        with self._lock:
            return dict(self.children)

    def create_content(self, payload):
        with self._lock:
            key = self._store(payload)
            self.creates.append(payload)
            return key

    def create_content_with_file(self, payload, property_alias, culture, filename, content_type, data):
        with self._lock:
            if self.file_error_status:
                raise HeartcoreApiError(
                    self.file_error_status, "Bad Request", "POST", "content",
                    body='{"message": "Invalid file"}', native_message="Invalid file",
                )
            key = self._store(payload)
            self.file_creates.append({
                "payload": payload,
                "part": f"{property_alias}.{culture}",
                "filename": filename,
                "content_type": content_type,
                "data": data,
            })
            return key

    def update_content(self, key, payload):
        with self._lock:
            self.updates.append((key, payload))

    def publish(self, key, culture):
        with self._lock:
            self.publishes.append((key, culture))
        return key not in self.fail_publish_keys

    def delete_content(self, key):
        with self._lock:
            self.deleted.append(key)
        return True

    def close(self):
        self.closed = True


class CountingLimiter(TokenBucketRateLimiter):
    """Token bucket that records how many tokens were taken."""

    def __init__(self, requests_per_second=1000):
        super().__init__(requests_per_second)
        self.acquired = 0
        self._count_lock = threading.Lock()

    def acquire(self, cancel_event=None):
        taken = super().acquire(cancel_event)
        if taken:
            with self._count_lock:
                self.acquired += 1
        return taken


def make_show(show_id, name="Show", genres=("Drama",), summary="<p>A show.</p>", image=None):
    return TVMazeShow(id=show_id, name=name, image=image, summary=summary, genres=tuple(genres))


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def make_options():
    """Factory for valid options with overrides."""
    def _make(**overrides):
        values = dict(
            project_alias="test-project",
            api_key="test-key",
            shows_parent_key=PARENT_KEY,
            import_cultures=("en-US",),
            max_degree_of_parallelism=4,
            requests_per_second=1000,
        )
        values.update(overrides)
        return HeartcoreOptions(**values)
    return _make


@pytest.fixture
def options(make_options):
    return make_options()


@pytest.fixture
def fake_client():
    return FakeHeartcoreClient()


@pytest.fixture
def poster():
    return ShowImage(
        medium="https://static.tvmaze.com/uploads/images/medium_portrait/81/202627.jpg",
        original="https://static.tvmaze.com/uploads/images/original_untouched/81/202627.jpg",
    )

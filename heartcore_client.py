"""
Umbraco Heartcore Management API client.

Operations used by the migration:
- validate_parent / get_children_index: startup checks and de-duplication
- create_content / create_content_with_file / update_content: upserts
- publish: best-effort, never raises
- upload_media / delete_content / delete_media / get_media_in_folder:
  standalone media upload and cleanup utilities

Every failing call that is not best-effort raises HeartcoreApiError with
the HTTP status, the Umbraco error code/message parsed from the body, and
the raw body.
"""

import json
import logging
import posixpath
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urljoin

import requests

from constants import (
    CHILDREN_PAGE_SIZE,
    CREATED_KEY_FIELDS,
    HEARTCORE_API_BASE,
    INVARIANT,
    MEDIA_FILE_PROPERTY,
    MEDIA_TYPE_ALIAS,
    PROP_SHOW_ID,
)
from http_client import RateLimitedSession, SessionAwareComponent
from metrics import metrics
from models import IndexEntry

logger = logging.getLogger(__name__)


class HeartcoreApiError(requests.HTTPError):
    """
    Non-success response from the Management API.

    Attributes:
        status_code: HTTP status
        native_code: Umbraco "status" field from the body, if any
        native_message: Umbraco title/error/message/detail, if any
        body: Raw response body
        method: HTTP method of the failed request
        url: Request URL
    """

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        method: str = "",
        url: str = "",
        body: str = "",
        native_code: Optional[str] = None,
        native_message: Optional[str] = None,
        response: Optional[requests.Response] = None,
    ):
        self.status_code = status_code
        self.reason = reason
        self.method = method
        self.url = url
        self.body = body
        self.native_code = native_code
        self.native_message = native_message

        msg = f"HTTP {status_code} {reason} when {method} {url}."
        if native_code or native_message:
            msg += " Umbraco error"
            if native_code:
                msg += f" code {native_code}"
            if native_message:
                msg += f", message: {native_message}"
            msg += "."
        msg += f" Body: {body}"
        super().__init__(msg, response=response)

    @classmethod
    def from_response(cls, response: requests.Response) -> "HeartcoreApiError":
        """Build the error from a failed response, parsing Umbraco's error body."""
        body = response.text or ""
        native_code, native_message = parse_error_body(body)
        request = response.request
        return cls(
            status_code=response.status_code,
            reason=response.reason or "",
            method=getattr(request, "method", "") or "",
            url=getattr(request, "url", "") or response.url or "",
            body=body,
            native_code=native_code,
            native_message=native_message,
            response=response,
        )


class HeartcoreResponseError(RuntimeError):
    """A successful response that lacks data the migration needs."""


def parse_error_body(body: str):
    """
    Extract Umbraco's error code and message from a JSON error body.

    Combines title, error/message and detail the way Umbraco problem
    details are usually rendered: "Title: message | detail".

    Returns:
        Tuple of (native_code, native_message), either may be None
    """
    try:
        root = json.loads(body)
    except (ValueError, TypeError):
        return None, None
    if not isinstance(root, dict):
        return None, None

    native_code = None
    native_message = None

    status = root.get("status")
    if isinstance(status, int) and not isinstance(status, bool):
        native_code = str(status)
    if isinstance(root.get("error"), str):
        native_message = root["error"]
    if isinstance(root.get("message"), str):
        native_message = root["message"]
    detail = root.get("detail")
    if isinstance(detail, str):
        native_message = f"{native_message} | {detail}" if native_message else detail
    title = root.get("title")
    if isinstance(title, str) and title.strip():
        native_message = f"{title}: {native_message}" if native_message else title

    return native_code, native_message


def extract_created_key(data: Any) -> str:
    """
    Get the new item's key from a create response.

    Heartcore returns "_id", but "id" and "key" are accepted too.

    Raises:
        HeartcoreResponseError: if none of the fields are present
    """
    if isinstance(data, dict):
        for name in CREATED_KEY_FIELDS:
            value = data.get(name)
            if value:
                return str(value)
    raise HeartcoreResponseError("Could not find content key in response")


def _first_variant_value(value: Any) -> str:
    """Name fields are culture maps; take the first culture's value."""
    if isinstance(value, dict):
        for item in value.values():
            return item or ""
        return ""
    return value or ""


class HeartcoreClient(SessionAwareComponent):
    """
    Thin client over the Management API.

    The client does not rate limit on its own. The upsert pipeline takes a
    token from its bucket before each call, so its sessions never replay a
    request at the transport level.
    """

    def __init__(
        self,
        project_alias: str,
        api_key: str,
        session: RateLimitedSession = None,
        base_url: str = HEARTCORE_API_BASE,
        timeout: float = 300.0,
        pool_size: int = 20,
    ):
        """
        Initialize Heartcore client.

        Args:
            project_alias: Heartcore project alias (Umb-Project-Alias header)
            api_key: Management API key (Api-Key header)
            session: Optional shared session for connection pooling
            base_url: API root
            timeout: Per-request timeout for a new session
            pool_size: Connection pool size for a new session
        """
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.init_session(session, timeout=timeout, pool_size=pool_size, max_retries=0)
        self.session.session.headers.update({
            "Umb-Project-Alias": project_alias,
            "Api-Key": api_key,
        })

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path)

    def _send(self, op: str, method: str, path: str, **kwargs) -> requests.Response:
        """Issue a request, recording latency and status per operation."""
        with metrics.timer("heartcore_request_duration_ms", labels={"op": op}):
            response = self.session.request(method, self._url(path), **kwargs)
        metrics.inc("heartcore_requests", labels={"op": op, "status": str(response.status_code)})
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        if response.ok:
            return
        raise HeartcoreApiError.from_response(response)

    @staticmethod
    def _multipart(
        content: Dict[str, Any],
        part_name: str,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> Dict[str, tuple]:
        """
        Build the two-part form Heartcore expects for uploads.

        "content" carries the JSON document and the file part is named
        "{propertyAlias}.{culture}".
        """
        return {
            "content": (None, json.dumps(content, ensure_ascii=False), "application/json"),
            part_name: (filename, data, content_type),
        }

    def _iter_pages(self, op: str, path: str) -> Iterator[dict]:
        """Follow _links.next.href until there is no next page."""
        url: Optional[str] = path
        while url:
            response = self._send(op, "GET", url)
            if response.status_code == 404:
                return
            self._raise_for_status(response)
            root = response.json()
            yield root

            url = None
            next_href = ((root.get("_links") or {}).get("next") or {}).get("href")
            if isinstance(next_href, str) and next_href:
                url = next_href

    # -------------------------------------------------------------------------
    # Content
    # -------------------------------------------------------------------------

    def validate_parent(self, parent_key: str) -> None:
        """
        Check that the parent content node exists.

        Raises:
            HeartcoreApiError: if the node cannot be read
        """
        response = self._send("validate_parent", "GET", f"content/{parent_key}")
        self._raise_for_status(response)

    def get_children_index(self, parent_key: str) -> Dict[str, IndexEntry]:
        """
        Map showId to existing content under the parent.

        Children without a showId value are ignored. A missing parent (404)
        yields an empty index.

        Returns:
            Dict of showId -> IndexEntry(key, name)
        """
        result: Dict[str, IndexEntry] = {}
        path = f"content/{parent_key}/children?page=1&pageSize={CHILDREN_PAGE_SIZE}"

        for root in self._iter_pages("list_children", path):
            items = (root.get("_embedded") or {}).get("content") or []
            for item in items:
                key = item.get("_id")
                if not key or "name" not in item:
                    continue
                show_id_prop = item.get(PROP_SHOW_ID)
                if not isinstance(show_id_prop, dict):
                    continue
                show_id = show_id_prop.get(INVARIANT)
                if show_id in (None, ""):
                    continue
                result[str(show_id)] = IndexEntry(
                    key=str(key), name=_first_variant_value(item.get("name"))
                )

        logger.debug(f"Indexed {len(result)} existing children of {parent_key}")
        return result

    def create_content(self, payload: Dict[str, Any]) -> str:
        """
        Create a content item from a JSON document.

        Returns:
            Key of the new item
        """
        response = self._send("create", "POST", "content", json=payload)
        self._raise_for_status(response)
        return extract_created_key(response.json())

    def create_content_with_file(
        self,
        payload: Dict[str, Any],
        property_alias: str,
        culture: str,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> str:
        """
        Create a content item and upload a file property in one request.

        The payload must already reference the file name in the property.

        Returns:
            Key of the new item
        """
        files = self._multipart(
            payload, f"{property_alias}.{culture}", filename, content_type, data
        )
        response = self._send("create_with_file", "POST", "content", files=files)
        self._raise_for_status(response)
        return extract_created_key(response.json())

    def update_content(self, key: str, payload: Dict[str, Any]) -> None:
        """Replace an existing content item's values."""
        response = self._send("update", "PUT", f"content/{key}", json=payload)
        self._raise_for_status(response)

    def publish(self, key: str, culture: str) -> bool:
        """
        Publish one culture of a content item.

        Failures never raise; the migration continues without them.

        Returns:
            True if Heartcore accepted the publish
        """
        try:
            response = self._send(
                "publish", "PUT", f"content/{key}/publish", json={"cultures": [culture]}
            )
        except requests.RequestException as e:
            logger.warning(f"Publish {key} [{culture}] failed: {e}", extra={"culture": culture})
            return False

        if not response.ok:
            logger.debug(
                f"Publish {key} [{culture}] returned HTTP {response.status_code}",
                extra={"culture": culture, "status_code": response.status_code},
            )
            return False
        return True

    def delete_content(self, key: str) -> bool:
        """Delete a content item. Failures are logged, not raised."""
        try:
            response = self._send("delete", "DELETE", f"content/{key}")
        except requests.RequestException as e:
            logger.warning(f"Delete content {key} failed: {e}")
            return False
        if not response.ok:
            logger.warning(f"Failed to delete content {key}: HTTP {response.status_code}")
            return False
        return True

    # -------------------------------------------------------------------------
    # Media
    # -------------------------------------------------------------------------

    def upload_media(
        self,
        folder_key: str,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> Optional[str]:
        """
        Create an Image media item with its file.

        Returns:
            "umb://media/{id}" reference, or None on any failure
        """
        media = {
            "mediaTypeAlias": MEDIA_TYPE_ALIAS,
            "parentId": folder_key,
            "name": posixpath.splitext(filename)[0],
            MEDIA_FILE_PROPERTY: {INVARIANT: filename},
        }
        files = self._multipart(
            media, f"{MEDIA_FILE_PROPERTY}.{INVARIANT}", filename, content_type, data
        )
        try:
            response = self._send("upload_media", "POST", "media", files=files)
            if not response.ok:
                logger.warning(f"Media upload of {filename} returned HTTP {response.status_code}")
                return None
            media_id = response.json().get("_id")
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Media upload of {filename} failed: {e}")
            return None

        return f"umb://media/{media_id}" if media_id else None

    def delete_media(self, key: str) -> bool:
        """Delete a media item. Failures are logged, not raised."""
        try:
            response = self._send("delete_media", "DELETE", f"media/{key}")
        except requests.RequestException as e:
            logger.warning(f"Delete media {key} failed: {e}")
            return False
        if not response.ok:
            logger.warning(f"Failed to delete media {key}: HTTP {response.status_code}")
            return False
        return True

    def get_media_in_folder(self, folder_key: str) -> List[str]:
        """
        List media keys in a folder.

        Failures are logged and whatever was collected so far is returned.
        """
        result: List[str] = []
        path = f"media/{folder_key}/children?page=1&pageSize={CHILDREN_PAGE_SIZE}"
        try:
            for root in self._iter_pages("list_media", path):
                for item in (root.get("_embedded") or {}).get("media") or []:
                    if item.get("_id"):
                        result.append(str(item["_id"]))
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Failed to list media in folder {folder_key}: {e}")
        return result

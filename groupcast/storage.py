"""Object-storage key to URL resolution."""

from __future__ import annotations

from urllib.parse import quote, urlsplit


def is_object_key(value: str) -> bool:
    """Return True if ``value`` looks like a bare storage key rather than a URL."""

    # Keys may contain colons ("report:2024.png"); only "scheme://" or "//host" is a URL.
    parts = urlsplit(value)
    if parts.netloc:
        return False
    return not (parts.scheme and value.startswith(f"{parts.scheme}://"))


class ObjectUrlBuilder:
    """Turns stored file keys into fetchable URLs at presentation time.

    Messages only ever persist the object key. The URL is built when a
    notification is pushed or history is read, so moving the bucket does not
    rewrite message history.
    """

    def __init__(self, bucket: str, region: str, base_url: str | None = None) -> None:
        self._bucket = bucket
        self._region = region
        self._base_url = base_url.rstrip("/") if base_url else None

    @property
    def base_url(self) -> str:
        if self._base_url:
            return self._base_url
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com"

    def resolve(self, key: str | None) -> str:
        if not key:
            return ""
        if not is_object_key(key):
            raise ValueError(f"Expected a storage key, got a URL: {key!r}")
        return f"{self.base_url}/{quote(key.lstrip('/'), safe='/')}"

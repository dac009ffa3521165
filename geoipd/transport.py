"""
HTTP transfer seam for database downloads
"""

import logging
import re
from typing import Iterator, Optional

import requests

from .errors import TransferError

logger = logging.getLogger("geoipd.transport")

_LICENSE_RE = re.compile(r"(license_key=)[^&]+")


def redact_url(url: str) -> str:
    """Hide the license key before a URL reaches a log line or error message"""
    return _LICENSE_RE.sub(r"\1***", url)


class HTTPFetcher:
    """Streams a URL as byte chunks using a requests session"""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None,
                 chunk_size: int = 64 * 1024):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.chunk_size = chunk_size

    def __call__(self, url: str) -> Iterator[bytes]:
        return self.fetch(url)

    def fetch(self, url: str) -> Iterator[bytes]:
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                if resp.status_code != 200:
                    raise TransferError(f"GET {redact_url(url)} returned HTTP {resp.status_code}")
                for chunk in resp.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        yield chunk
        except requests.RequestException as e:
            raise TransferError(f"GET {redact_url(url)} failed: {e}") from e

    def close(self) -> None:
        self.session.close()

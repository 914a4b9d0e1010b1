# solc_gateway/fetch.py
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin

import requests

from solc_gateway.errors import DeadlineExceeded, FetchFailed, ResourceLimitExceeded
from solc_gateway.request import ResolutionContext
from solc_gateway.resolver import assert_allowed, canonical_url

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)
MAX_REDIRECTS = 5
CHUNK_SIZE = 64 * 1024
USER_AGENT = "solc-gateway"


class FetchCache:
    """
    Per-request memo of remote text by canonical URL.

    - A hit never touches the network.
    - Redirects are followed by hand so every hop is checked against the allow-list
      before it is requested.
    - With max_bytes, the body is streamed and the fetch aborts as soon as it grows past
      the byte limit; over-limit content is never kept.
    """

    def __init__(
            self,
            ctx: ResolutionContext,
            *,
            session: Any | None = None,
            fetch_timeout_s: float = 20.0,
    ):
        self.ctx = ctx
        self.fetch_timeout_s = fetch_timeout_s
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()
        self._texts: dict[str, str] = {}
        self.fetch_count = 0
        self.hits = 0

    def __enter__(self) -> "FetchCache":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __contains__(self, url: str) -> bool:
        return url in self._texts

    def _timeout_for(self, url: str) -> float:
        left = self.ctx.seconds_left()
        if left is None:
            return self.fetch_timeout_s
        if left <= 0:
            raise DeadlineExceeded(self.ctx.timeout_s or 0, url=url)
        return min(self.fetch_timeout_s, left)

    def get(self, url: str, *, max_bytes: int | None = None) -> str:
        if url in self._texts:
            self.hits += 1
            logger.debug("fetch cache hit", extra={"url": url})
            return self._texts[url]

        assert_allowed(url, self.ctx)
        data = self._download(url, max_bytes=max_bytes)
        text = data.decode("utf-8", errors="replace")

        self.fetch_count += 1
        self._texts[url] = text
        logger.info("fetched import", extra={"url": url, "bytes": len(data)})
        return text

    def _download(self, url: str, *, max_bytes: int | None) -> bytes:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            timeout = self._timeout_for(current)
            try:
                resp = self._session.get(
                    current,
                    allow_redirects=False,
                    stream=True,
                    timeout=timeout,
                    headers={"User-Agent": USER_AGENT},
                )
            except requests.Timeout as e:
                left = self.ctx.seconds_left()
                if left is not None and left <= 0:
                    raise DeadlineExceeded(self.ctx.timeout_s or 0, url=current) from e
                raise FetchFailed(current, reason=f"timed out after {timeout:g}s") from e
            except requests.RequestException as e:
                raise FetchFailed(current, reason=str(e)) from e

            try:
                status = resp.status_code
                location = resp.headers.get("Location")
                if status in REDIRECT_STATUSES and location:
                    nxt = canonical_url(urljoin(current, location))
                    assert_allowed(nxt, self.ctx)
                    current = nxt
                    continue

                if not 200 <= status < 300:
                    raise FetchFailed(url, status=status, reason=resp.reason or "")

                return self._read_body(resp, url, max_bytes=max_bytes)
            finally:
                resp.close()

        raise FetchFailed(url, reason=f"too many redirects (> {MAX_REDIRECTS})")

    def _read_body(self, resp: Any, url: str, *, max_bytes: int | None) -> bytes:
        chunks: list[bytes] = []
        total = 0
        try:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                left = self.ctx.seconds_left()
                if left is not None and left <= 0:
                    raise DeadlineExceeded(self.ctx.timeout_s or 0, url=url)
                total += len(chunk)
                if max_bytes is not None and total > max_bytes:
                    raise ResourceLimitExceeded("max_total_bytes", self.ctx.max_total_bytes, url=url)
                chunks.append(chunk)
        except requests.RequestException as e:
            raise FetchFailed(url, reason=str(e)) from e
        return b"".join(chunks)

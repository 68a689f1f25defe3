from __future__ import annotations

import logging
import time
from typing import Callable

import httpx

from crawl_worker.models import FetchResult

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; SeoCrawlWorker/1.0; +https://example.com/bot)"
ACCEPT = "text/html,application/xhtml+xml"
HTML_TYPES = ("text/html", "application/xhtml+xml")


class FetchDeadlineExceeded(Exception):
    pass


def is_html(content_type: str) -> bool:
    return content_type.split(";")[0].strip().lower() in HTML_TYPES


class DocumentFetcher:
    """Bounded single-URL GET that always returns a FetchResult.

    The total time budget covers redirects, headers and body; running out of
    time or redirects is reported as a timeout. Transport failures are
    returned, never raised.
    """

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        max_redirects: int = 5,
        max_bytes: int = 10 * 1024 * 1024,
        user_agent: str = USER_AGENT,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.max_bytes = max_bytes
        self.clock = clock
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            headers={"User-Agent": user_agent, "Accept": ACCEPT},
            transport=transport,
        )

    def __enter__(self) -> "DocumentFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def fetch(self, url: str) -> FetchResult:
        deadline = self.clock() + self.timeout
        try:
            resp = self._open(url, deadline)
            try:
                self._check_deadline(deadline)
                final_url = str(resp.url)
                content_type = resp.headers.get("content-type", "").lower()
                if not is_html(content_type):
                    # Non-HTML resources are skipped, not failed.
                    return FetchResult(
                        ok=True,
                        status=resp.status_code,
                        content_type=content_type or None,
                        final_url=final_url,
                    )
                body = self._read_body(resp, url, deadline)
                status = resp.status_code
                encoding = resp.encoding or "utf-8"
            finally:
                resp.close()
        except (httpx.TimeoutException, FetchDeadlineExceeded):
            return self._failure(url, f"timeout after {self.timeout:g}s", "timeout")
        except httpx.TooManyRedirects:
            return self._failure(url, f"timeout: too many redirects (max {self.max_redirects})", "timeout")
        except httpx.HTTPError as e:
            return self._failure(url, str(e) or e.__class__.__name__, "transport")
        except httpx.InvalidURL as e:
            return self._failure(url, f"Invalid URL: {e}", "transport")
        except Exception as e:
            logger.error("Unexpected error fetching %s: %s", url, e)
            return self._failure(url, f"Unexpected error: {e}", "transport")

        if not 200 <= status < 400:
            return FetchResult(
                ok=False,
                status=status,
                content_type=content_type,
                final_url=final_url,
                error=f"HTTP {status}",
                error_kind="http",
            )
        return FetchResult(
            ok=True,
            status=status,
            content_type=content_type,
            final_url=final_url,
            html=self._decode(body, encoding),
        )

    def _open(self, url: str, deadline: float) -> httpx.Response:
        """Send the GET and follow redirects by hand, each hop bounded by the time left."""
        request = self._client.build_request("GET", url)
        for _ in range(self.max_redirects + 1):
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise FetchDeadlineExceeded()
            request.extensions["timeout"] = httpx.Timeout(remaining).as_dict()
            resp = self._client.send(request, stream=True)
            if resp.next_request is None:
                return resp
            resp.close()
            request = resp.next_request
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    def _check_deadline(self, deadline: float) -> None:
        if self.clock() > deadline:
            raise FetchDeadlineExceeded()

    def _read_body(self, resp: httpx.Response, url: str, deadline: float) -> bytes:
        content = bytearray()
        for chunk in resp.iter_bytes(chunk_size=8192):
            self._check_deadline(deadline)
            content += chunk
            if len(content) > self.max_bytes:
                logger.warning("Response too large for %s, truncating at %d bytes", url, self.max_bytes)
                return bytes(content[: self.max_bytes])
        return bytes(content)

    @staticmethod
    def _decode(body: bytes, encoding: str) -> str:
        try:
            return body.decode(encoding, errors="replace")
        except LookupError:
            return body.decode("utf-8", errors="replace")

    def _failure(self, url: str, error: str, kind: str) -> FetchResult:
        logger.warning("Fetch failed for %s: %s", url, error)
        return FetchResult(
            ok=False,
            status=None,
            content_type=None,
            final_url=url,
            error=error,
            error_kind=kind,
        )

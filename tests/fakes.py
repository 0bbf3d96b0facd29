# tests/fakes.py

import base64
import json
import threading
import time
from typing import Dict, Optional

from itsdangerous import TimestampSigner


def signed_session_cookie(secret: str, data: Dict) -> str:
    """Cookie value Starlette's SessionMiddleware accepts for `data`."""
    payload = base64.b64encode(json.dumps(data).encode("utf-8"))
    return TimestampSigner(secret).sign(payload).decode("utf-8")


class FakeResponse:
    """Bare response with the attributes ChunkedUploader reads."""

    def __init__(self, status_code: int, payload: Optional[Dict] = None):
        self.status_code = status_code
        self._payload = payload or {"detail": "fake failure"}
        self.text = json.dumps(self._payload)

    def json(self):
        return self._payload


class FlakyHttp:
    """
    Wraps a real client and fails chosen chunk uploads.

    - failures: {chunk_index: number_of_failures_before_success}
    - status_code: what the failed attempts answer with
    - Records every upload attempt per chunk index
    """

    def __init__(self, inner, failures: Dict[int, int], status_code: int = 503):
        self.inner = inner
        self.remaining = dict(failures)
        self.status_code = status_code
        self.attempts: Dict[int, int] = {}
        self.merge_calls = 0
        self._lock = threading.Lock()

    def post(self, url, **kwargs):
        if url.endswith("/chunk/merge"):
            self.merge_calls += 1
        if url.endswith("/chunk/upload"):
            index = int(kwargs["data"]["chunkIndex"])
            with self._lock:
                self.attempts[index] = self.attempts.get(index, 0) + 1
                left = self.remaining.get(index, 0)
                if left > 0:
                    self.remaining[index] = left - 1
                    return FakeResponse(self.status_code)
        return self.inner.post(url, **kwargs)

    def get(self, url, **kwargs):
        return self.inner.get(url, **kwargs)

    def delete(self, url, **kwargs):
        return self.inner.delete(url, **kwargs)


class InFlightCountingHttp:
    """Counts concurrent chunk uploads and slows each one down a little."""

    def __init__(self, inner, delay: float = 0.02):
        self.inner = inner
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def post(self, url, **kwargs):
        if not url.endswith("/chunk/upload"):
            return self.inner.post(url, **kwargs)
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(self.delay)
            return self.inner.post(url, **kwargs)
        finally:
            with self._lock:
                self.in_flight -= 1

    def get(self, url, **kwargs):
        return self.inner.get(url, **kwargs)

    def delete(self, url, **kwargs):
        return self.inner.delete(url, **kwargs)

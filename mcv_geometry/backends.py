"""
Solver backends: one interface, two interchangeable implementations.

    LocalBackend   - dispatches requests in-process
    RemoteBackend  - posts the request envelope as JSON to a remote server

Both return the same response envelopes, so callers never branch on where
the solver runs. ``create_backend`` picks one from configuration.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

import requests

from .api import failure, handle_request
from .config import Config

logger = logging.getLogger(__name__)

HTTP_ERROR = "HTTP_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"


class SolverBackend(ABC):
    """Executes request envelopes and returns response envelopes."""

    name = "abstract"

    @abstractmethod
    def call(self, op: str, args: Optional[Any] = None) -> Dict[str, Any]:
        """Run one operation; never raises for solver or transport failures."""

    def solve_pose(self, correspondences, image_size=None, refine: bool = True) -> Dict[str, Any]:
        args = {'correspondences': correspondences, 'refine': refine}
        if image_size is not None:
            args['imageSize'] = list(image_size)
        return self.call('solvePose', args)

    def solve_tick_boundary(self, segment_before, segment_after) -> Dict[str, Any]:
        return self.call(
            'solveTickBoundary',
            {'segmentBefore': segment_before, 'segmentAfter': segment_after},
        )

    def health(self) -> Dict[str, Any]:
        return self.call('health', {})


class LocalBackend(SolverBackend):
    """In-process backend."""

    name = "local"

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.default()

    def call(self, op: str, args: Optional[Any] = None) -> Dict[str, Any]:
        return handle_request({'op': op, 'args': args if args is not None else {}}, self.config)


class RemoteBackend(SolverBackend):
    """
    HTTP backend posting ``{"op", "args"}`` to ``<url>/api/mcv``.

    Connection failures and timeouts are retried with exponential backoff;
    non-2xx responses are reported as HTTP_ERROR without retrying.
    """

    name = "remote"
    ENDPOINT = "/api/mcv"

    def __init__(
        self,
        url: str,
        timeout: float = 30,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the remote backend.

        Args:
            url: Base URL of the solver server
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Base delay between retries (exponential backoff)
            session: Optional preconfigured session
        """
        self.url = url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        })

    def call(self, op: str, args: Optional[Any] = None) -> Dict[str, Any]:
        payload = {'op': op, 'args': args if args is not None else {}}
        endpoint = f"{self.url}{self.ENDPOINT}"

        for attempt in range(self.max_retries):
            try:
                response = self.session.post(endpoint, json=payload, timeout=self.timeout)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Request failed, retrying in {delay}s: {e}")
                    time.sleep(delay)
                    continue
                return failure(NETWORK_ERROR, "Could not reach backend API", details=str(e))
            except requests.exceptions.RequestException as e:
                return failure(NETWORK_ERROR, "Could not reach backend API", details=str(e))

            if not response.ok:
                # The server reports envelope failures (e.g. UNKNOWN_OP) with 4xx codes
                try:
                    body = response.json()
                except ValueError:
                    body = None
                if isinstance(body, dict) and body.get('ok') is False and 'error' in body:
                    return body
                return failure(HTTP_ERROR, f"HTTP {response.status_code}")

            try:
                body = response.json()
            except ValueError as e:
                return failure(HTTP_ERROR, "Backend returned invalid JSON", details=str(e))
            if not isinstance(body, dict) or 'ok' not in body:
                return failure(HTTP_ERROR, "Backend returned a malformed envelope")
            return body

        return failure(NETWORK_ERROR, "Could not reach backend API")


def create_backend(config: Optional[Config] = None) -> SolverBackend:
    """Backend selected by ``config.backend.mode``."""
    config = config or Config.default()
    settings = config.backend
    if settings.mode == 'remote':
        logger.info(f"Using remote solver backend at {settings.url}")
        return RemoteBackend(
            settings.url,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
        )
    if settings.mode == 'local':
        return LocalBackend(config)
    raise ValueError(f"Unknown backend mode: {settings.mode!r}")

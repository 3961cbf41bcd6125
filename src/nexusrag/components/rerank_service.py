"""
Rerank service for NexusRAG.

The cross-encoder runs on a dedicated worker thread. Callers submit a
RerankRequest, get a Future back, and wait on it with a timeout; the worker
answers with a RerankResponse carrying the same request_id. Backend errors
are reported on the response's ``error`` field instead of being raised on the
worker thread.
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional, Tuple

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.protocols import RerankBackend
from nexusrag.models import RerankRequest, RerankResponse

# Configure logging
logger = logging.getLogger(__name__)

# How often a waiting caller re-checks its cancellation token
POLL_INTERVAL = 0.05

_STOP = object()


class RerankService:
    """Worker thread that serializes cross-encoder scoring."""

    def __init__(
        self,
        backend: RerankBackend,
        timeout: float = 30.0,
        name: str = "nexusrag-rerank",
    ):
        """
        Initialize rerank service.

        Args:
            backend: Object with ``score(query, passages) -> List[float]``
            timeout: Default seconds a caller waits for a response
            name: Worker thread name
        """
        self.backend = backend
        self.timeout = timeout
        self.name = name
        self._inbox: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "RerankService":
        """Start the worker thread (idempotent)."""
        with self._lock:
            if self.running:
                return self
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
            logger.info(f"Rerank worker '{self.name}' started")
        return self

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the worker thread after it finishes the current request."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._inbox.put(_STOP)
            self._thread = None
        thread.join(timeout)
        logger.info(f"Rerank worker '{self.name}' stopped")

    def __enter__(self) -> "RerankService":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def submit(self, request: RerankRequest) -> Future:
        """Queue a request and return the Future that will hold its response."""
        if not self.running:
            self.start()
        future: Future = Future()
        self._inbox.put((request, future))
        logger.debug(
            f"Queued rerank request {request.request_id} "
            f"({len(request.candidates)} candidates)"
        )
        return future

    def rerank(
        self,
        request: RerankRequest,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RerankResponse:
        """
        Submit a request and wait for its response.

        Args:
            request: Query and candidates to score
            timeout: Seconds to wait (defaults to the service timeout)
            cancel_token: Token polled while waiting

        Returns:
            RerankResponse for this request (``error`` set on backend failure)

        Raises:
            TimeoutError: If no response arrives in time
            OperationCancelled: If the token is cancelled while waiting
            RuntimeError: If the worker answered a different request
        """
        cancel_token = cancel_token or CancellationToken()
        cancel_token.raise_if_cancelled("reranking")

        timeout = self.timeout if timeout is None else timeout
        future = self.submit(request)
        deadline = time.monotonic() + timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                raise TimeoutError(
                    f"Rerank request {request.request_id} timed out after {timeout}s"
                )
            try:
                response = future.result(timeout=min(POLL_INTERVAL, remaining))
                break
            except FutureTimeoutError:
                if cancel_token.cancelled:
                    future.cancel()
                    raise OperationCancelled(
                        f"Operation cancelled while reranking: {cancel_token.reason}"
                    )

        if response.request_id != request.request_id:
            raise RuntimeError(
                f"Rerank response {response.request_id} does not match "
                f"request {request.request_id}"
            )
        return response

    def _handle(self, request: RerankRequest) -> RerankResponse:
        passages = [candidate.content for candidate in request.candidates]
        try:
            scores = self.backend.score(request.query, passages)
        except Exception as e:
            logger.error(f"Rerank backend failed for {request.request_id}: {e}")
            return RerankResponse(request_id=request.request_id, error=str(e))

        if len(scores) != len(passages):
            error = f"Backend returned {len(scores)} scores for {len(passages)} passages"
            logger.error(error)
            return RerankResponse(request_id=request.request_id, error=error)

        results = [
            candidate.model_copy(update={"rerank_score": float(score)})
            for candidate, score in zip(request.candidates, scores)
        ]
        return RerankResponse(request_id=request.request_id, results=results)

    def _run(self) -> None:
        while True:
            item: Tuple = self._inbox.get()
            if item is _STOP:
                break
            request, future = item
            # caller gave up (timeout or cancellation)
            if not future.set_running_or_notify_cancel():
                logger.debug(f"Skipping abandoned rerank request {request.request_id}")
                continue
            future.set_result(self._handle(request))

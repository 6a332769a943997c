"""
Change-stream subscriptions for live views.

A Subscription owns one MongoDB change stream and a worker thread that hands
each change to a callback. It must be closed when the consuming view goes
away; closing is idempotent and the stream is released exactly once, by the
worker thread that reads from it.
"""

import threading
from typing import Any, Callable, Dict, List, Optional

import structlog
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

logger = structlog.get_logger(__name__)


class Subscription:
    def __init__(
        self,
        collection: Collection,
        on_change: Callable[[Dict[str, Any]], None],
        pipeline: Optional[List[Dict[str, Any]]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        poll_interval: float = 0.5,
    ):
        self.collection = collection
        self.on_change = on_change
        self.on_error = on_error
        self.pipeline = pipeline or []
        self.poll_interval = poll_interval
        self._stream = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    @property
    def closed(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> "Subscription":
        """Open the change stream. Raises PyMongoError if the store refuses it."""
        with self._lock:
            if self._stopped.is_set():
                raise RuntimeError("Subscription already closed")
            if self._stream is not None:
                return self
            self._stream = self.collection.watch(self.pipeline, full_document="updateLookup")
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stream,),
                name=f"subscription-{self.collection.name}",
                daemon=True,
            )
            self._thread.start()
        logger.info("Subscription opened", collection=self.collection.name)
        return self

    def _run(self, stream) -> None:
        try:
            while not self._stopped.is_set():
                try:
                    change = stream.try_next()
                except PyMongoError as exc:
                    if self._stopped.is_set():
                        return
                    logger.error("Subscription failed", collection=self.collection.name, error=str(exc))
                    if self.on_error is not None:
                        self.on_error(exc)
                    return
                if change is None:
                    self._stopped.wait(self.poll_interval)
                    continue
                if not self._stopped.is_set():
                    self.on_change(change)
        finally:
            try:
                stream.close()
            except PyMongoError as exc:
                logger.warning("Error closing change stream", collection=self.collection.name, error=str(exc))

    def close(self) -> bool:
        """Stop the worker. Returns False if the subscription was already closed.

        Waits at most a few poll intervals for the worker; a worker still
        blocked on the store releases the stream as soon as its read returns.
        """
        with self._lock:
            if self._stopped.is_set():
                return False
            self._stopped.set()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.poll_interval * 4)
        logger.info("Subscription closed", collection=self.collection.name)
        return True

    def __enter__(self) -> "Subscription":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

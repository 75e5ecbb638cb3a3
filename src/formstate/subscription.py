"""
Change subscription channel: synchronous push notifications for value writes.

Delivery model:
- Every publish() enumerates the subscribers affected by the changed paths
  and invokes each with a fresh full-tree snapshot, on the caller's thread
- Inside batch() blocks publishes are collected and delivered once, when the
  outermost block exits (at most one delivery per subscriber per batch)
- Subscription.release() is idempotent and stops delivery immediately, even
  for deliveries already scheduled in the current flush
"""
import copy
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Set, Tuple

from formstate.paths import overlaps

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Dict[str, Any]], None]

# Changed-path marker meaning "the whole tree was replaced"
WHOLE_TREE = None


class Subscription:
    """Disposable subscription token.

    Usable as a context manager for scoped acquisition:

        with form.handle.watch("email", callback)[1]:
            ...                         # deliveries happen here
        # released on exit, even on exception
    """

    def __init__(
        self,
        channel: 'ChangeSubscriptionChannel',
        callback: Optional[SnapshotCallback],
        paths: Optional[Tuple[str, ...]],
    ):
        self._channel = channel
        self._callback = callback
        self.paths = paths
        self._active = True
        self.delivery_count = 0
        # Last delivered snapshot (useful for callback-less watchers that poll)
        self.latest: Optional[Dict[str, Any]] = None

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        """Stop all further deliveries. Safe to call repeatedly."""
        if not self._active:
            return
        self._active = False
        self._channel._discard(self)
        logger.debug(f"Released subscription (paths={self.paths})")

    # Alias matching the subscription objects of observable-style APIs
    unsubscribe = release

    def affected_by(self, changed: Set[Optional[str]]) -> bool:
        if self.paths is None or WHOLE_TREE in changed:
            return True
        return any(overlaps(mine, path) for mine in self.paths for path in changed if path is not None)

    def _deliver(self, snapshot: Dict[str, Any]) -> None:
        self.latest = snapshot
        self.delivery_count += 1
        if self._callback is not None:
            self._callback(snapshot)

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "active" if self._active else "released"
        return f"Subscription(paths={self.paths}, {state}, deliveries={self.delivery_count})"


class ChangeSubscriptionChannel:
    """Push notification stream for value mutations of one container.

    Thread safety: Not thread-safe (single-threaded cooperative model).
    """

    def __init__(self, snapshot_provider: Callable[[], Dict[str, Any]]):
        """
        Args:
            snapshot_provider: Returns the current full value tree (a copy)
        """
        self._snapshot_provider = snapshot_provider
        self._subscribers: List[Subscription] = []
        self._batch_depth = 0
        self._pending: Set[Optional[str]] = set()
        self._flushing = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def in_batch(self) -> bool:
        return self._batch_depth > 0

    def subscribe(
        self,
        callback: Optional[SnapshotCallback] = None,
        paths: Optional[Iterable[str]] = None,
    ) -> Subscription:
        """Subscribe to value changes.

        Args:
            callback: Called with the full value snapshot. May be None for
                      watchers that only read Subscription.latest.
            paths: Canonical paths of interest; None subscribes to every change.
        """
        subscription = Subscription(self, callback, tuple(paths) if paths is not None else None)
        self._subscribers.append(subscription)
        logger.debug(f"Subscribed (paths={subscription.paths}, total={len(self._subscribers)})")
        return subscription

    def _discard(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, paths: Iterable[Optional[str]]) -> None:
        """Announce that values at paths changed (None = whole tree)."""
        self._pending.update(paths)
        if self._batch_depth > 0 or self._flushing:
            return
        self._flush()

    @contextmanager
    def batch(self) -> Generator[None, None, None]:
        """Coalesce every publish inside the block into one delivery round.

        Nested batches are supported; only the outermost block delivers.
        """
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._pending and not self._flushing:
                self._flush()

    def _flush(self) -> None:
        """Deliver pending changes.

        Writes made by subscribers during delivery are collected and delivered
        in a follow-up round rather than recursively.
        """
        self._flushing = True
        try:
            while self._pending:
                changed = set(self._pending)
                self._pending.clear()
                targets = [s for s in self._subscribers if s.affected_by(changed)]
                if not targets:
                    continue
                snapshot = self._snapshot_provider()
                logger.debug(f"Delivering change {sorted(map(str, changed))} to {len(targets)} subscriber(s)")
                for subscription in targets:
                    # Released mid-flush (possibly by an earlier subscriber)
                    if not subscription.active:
                        continue
                    try:
                        subscription._deliver(copy.deepcopy(snapshot))
                    except Exception as e:
                        logger.warning(f"Change subscriber failed: {e}")
        finally:
            self._flushing = False

    def close(self) -> None:
        """Release every subscription (container teardown)."""
        for subscription in list(self._subscribers):
            subscription.release()
        self._pending.clear()

"""
Optimistic updates with explicit reconcile-or-rollback.
"""
import logging
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UpdateState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


class OptimisticUpdate(Generic[T]):
    """
    One speculative change to some client state.

    ``begin`` snapshots the state and applies the speculative change.
    Exactly one of ``commit`` (reconcile with the authoritative response)
    or ``rollback`` (restore the snapshot) then ends the update.

    Usage::

        update = OptimisticUpdate(store.snapshot, store.restore)
        update.begin(lambda: store.apply_local(order_id))
        try:
            order = service.mark_as_paid(order_id)
        except ApiError as e:
            update.rollback(e)
            raise
        update.commit(lambda: store.replace(order))
    """

    def __init__(self, snapshot: Callable[[], T], restore: Callable[[T], None]):
        self._snapshot = snapshot
        self._restore = restore
        self._saved: Optional[T] = None
        self.state: Optional[UpdateState] = None
        self.error: Optional[BaseException] = None

    def begin(self, apply: Callable[[], None]) -> None:
        if self.state is not None:
            raise RuntimeError(f"Optimistic update already {self.state.value}")
        self._saved = self._snapshot()
        self.state = UpdateState.PENDING
        apply()

    def commit(self, reconcile: Callable[[], None]) -> None:
        self._finish()
        reconcile()
        self.state = UpdateState.COMMITTED
        self._saved = None

    def rollback(self, error: Optional[BaseException] = None) -> None:
        self._finish()
        self._restore(self._saved)
        self.state = UpdateState.ROLLED_BACK
        self.error = error
        self._saved = None
        logger.info(f"Rolled back optimistic update: {error}")

    def discard(self, error: Optional[BaseException] = None) -> None:
        """End as rolled back without restoring; the state was replaced meanwhile"""
        self._finish()
        self.state = UpdateState.ROLLED_BACK
        self.error = error
        self._saved = None
        logger.info(f"Discarded optimistic update: {error}")

    def _finish(self) -> None:
        if self.state is not UpdateState.PENDING:
            state = self.state.value if self.state else "not started"
            raise RuntimeError(f"Cannot finish optimistic update: {state}")

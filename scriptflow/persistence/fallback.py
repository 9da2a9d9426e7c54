"""Backend selection with sticky demotion across storage tiers.

A :class:`FallbackResolver` owns the single "current backend" reference for a
subsystem. It is built from an ordered list of :class:`BackendTier` entries,
most durable first. The first tier whose factory returns an instance is
selected lazily on first use; a tier is skipped when its factory returns
``None`` (not configured) or raises while constructing.

At runtime, a transport failure reported through :meth:`FallbackResolver.demote`
moves the reference to the next usable tier for the rest of the process.
Concurrent demotions reported against the same instance converge on a single
replacement.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from ..errors import StorageTransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class BackendTier(Generic[T]):
    """One storage option: a name and a factory returning an instance or ``None``."""

    kind: str
    factory: Callable[[], Optional[T]]


def is_transport_failure(error: BaseException) -> bool:
    """Only explicitly classified transport errors trigger demotion."""
    return isinstance(error, StorageTransportError)


class FallbackResolver(Generic[T]):
    """Process-wide holder of the preferred available backend."""

    def __init__(self, tiers: Sequence[BackendTier[T]], name: str = "storage") -> None:
        if not tiers:
            raise ValueError("At least one backend tier is required")
        self._tiers: List[BackendTier[T]] = list(tiers)
        self._name = name
        self._lock = threading.Lock()
        self._instance: Optional[T] = None
        self._index: Optional[int] = None
        self.demotions = 0

    # ------------------------------------------------------------------
    def _select_from(self, start: int) -> None:
        for index in range(start, len(self._tiers)):
            tier = self._tiers[index]
            try:
                instance = tier.factory()
            except Exception as exc:
                logger.warning(
                    f"Failed to initialise {tier.kind} {self._name} backend, "
                    f"trying next tier: {exc}"
                )
                continue
            if instance is None:
                continue
            self._instance = instance
            self._index = index
            logger.info(f"Using {tier.kind} {self._name} backend")
            return
        raise RuntimeError(f"No {self._name} backend could be initialised")

    def current(self) -> T:
        """Return the active backend, selecting one on first use."""
        with self._lock:
            if self._instance is None:
                self._select_from(0)
            return self._instance  # type: ignore[return-value]

    @property
    def kind(self) -> Optional[str]:
        """Kind of the active backend, or ``None`` before first use."""
        with self._lock:
            return self._tiers[self._index].kind if self._index is not None else None

    def demote(self, failed: T, error: Optional[BaseException] = None) -> T:
        """Replace ``failed`` with the next usable tier and return the new backend.

        If ``failed`` is no longer current, another caller already demoted it
        and the existing replacement is returned unchanged.
        """
        with self._lock:
            if self._instance is not failed or self._index is None:
                return self._instance if self._instance is not None else failed
            if self._index + 1 >= len(self._tiers):
                logger.error(
                    f"{self._tiers[self._index].kind} {self._name} backend failed "
                    "and no fallback tier remains"
                )
                return self._instance
            previous = self._tiers[self._index].kind
            self._select_from(self._index + 1)
            self.demotions += 1
            logger.warning(
                f"Falling back from {previous} to {self._tiers[self._index].kind} "
                f"{self._name} backend after failure: {error}"
            )
            return self._instance

    async def call(self, operation: str, fn: Callable[[T], Awaitable[R]]) -> R:
        """Run ``fn`` against the current backend, retrying once after demotion.

        Errors that are not transport failures propagate untouched and are
        never retried.
        """
        backend = self.current()
        try:
            return await fn(backend)
        except Exception as exc:
            if not is_transport_failure(exc):
                raise
            logger.warning(f"{self._name} {operation} hit a transport failure: {exc}")
            replacement = self.demote(backend, exc)
            if replacement is backend:
                raise
        return await fn(replacement)

    def reset(self) -> None:
        """Forget the selected backend. Intended for tests."""
        with self._lock:
            self._instance = None
            self._index = None
            self.demotions = 0

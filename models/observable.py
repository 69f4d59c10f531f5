"""Subscription primitives for UI-observed state.

Observable holds a list of subscriber callbacks. A subscriber is called
once with the current value when it subscribes and again after every
change. Derived projects another observable through a pure function and
only listens to its source while it has subscribers of its own.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S")

Unsubscribe = Callable[[], None]


class Observable(ABC, Generic[T]):
    """Base class for values that notify subscribers on change."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T], None]] = []

    @abstractmethod
    def get(self) -> T:
        """Return the current value."""

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Register callback and call it immediately with the current value.

        Returns:
            A callable that removes the subscription. Calling it more than
            once is harmless.
        """
        self._subscribers.append(callback)
        callback(self.get())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, value: T) -> None:
        # A failing subscriber must not stop the others or the mutation
        # that triggered the notification.
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed: {e}", exc_info=True)


class Derived(Observable[T], Generic[S, T]):
    """Observable computed from another observable.

    Args:
        source: The observable to project.
        fn: Pure function from the source value to the derived value.
    """

    def __init__(self, source: Observable[S], fn: Callable[[S], T]) -> None:
        super().__init__()
        self._source = source
        self._fn = fn
        self._unsubscribe_source: Optional[Unsubscribe] = None

    def get(self) -> T:
        return self._fn(self._source.get())

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        if self._unsubscribe_source is None:
            self._unsubscribe_source = self._source.subscribe(self._on_source_change)
        unsubscribe = super().subscribe(callback)

        def unsubscribe_derived() -> None:
            unsubscribe()
            if not self._subscribers and self._unsubscribe_source is not None:
                self._unsubscribe_source()
                self._unsubscribe_source = None

        return unsubscribe_derived

    def _on_source_change(self, value: S) -> None:
        if self._subscribers:
            self._notify(self._fn(value))

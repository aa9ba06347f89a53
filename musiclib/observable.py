from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, MutableSequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, overload

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Event:
    """A list of handlers invoked in subscription order."""

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: list[Callable[..., Any]] = []

    def subscribe(self, handler: Callable[..., Any]) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: Callable[..., Any]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            logger.debug("Handler %r was not subscribed", handler)

    def emit(self, *args: Any) -> None:
        for handler in list(self._handlers):
            handler(*args)

    def __len__(self) -> int:
        return len(self._handlers)


class ChangeAction(enum.Enum):
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    MOVE = "move"
    RESET = "reset"


@dataclass(frozen=True)
class CollectionChange:
    action: ChangeAction
    new_items: tuple[Any, ...] = ()
    old_items: tuple[Any, ...] = ()
    new_index: int = -1
    old_index: int = -1


def is_observable(collection: object) -> bool:
    return isinstance(getattr(collection, "collection_changed", None), Event)


def is_notifying(item: object) -> bool:
    return isinstance(getattr(item, "property_changed", None), Event)


class ObservableList(MutableSequence[T], Generic[T]):
    """
    A list that publishes structural changes through ``collection_changed``.

    Handlers receive ``(sender, change)`` where ``change`` is a
    :class:`CollectionChange`. Every mutation produces exactly one event.
    """

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._items: list[T] = list(items)
        self.collection_changed = Event()

    @overload
    def __getitem__(self, index: int) -> T: ...

    @overload
    def __getitem__(self, index: slice) -> list[T]: ...

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __setitem__(self, index, value) -> None:
        if isinstance(index, slice):
            raise TypeError("ObservableList does not support slice assignment")
        position = range(len(self._items))[index]
        old = self._items[position]
        self._items[position] = value
        self._notify(ChangeAction.REPLACE, new_items=(value,), old_items=(old,), new_index=position, old_index=position)

    def __delitem__(self, index) -> None:
        if isinstance(index, slice):
            raise TypeError("ObservableList does not support slice deletion")
        position = range(len(self._items))[index]
        old = self._items.pop(position)
        self._notify(ChangeAction.REMOVE, old_items=(old,), old_index=position)

    def insert(self, index: int, value: T) -> None:
        position = min(max(index if index >= 0 else len(self._items) + index, 0), len(self._items))
        self._items.insert(position, value)
        self._notify(ChangeAction.ADD, new_items=(value,), new_index=position)

    def move(self, old_index: int, new_index: int) -> None:
        item = self._items.pop(old_index)
        self._items.insert(new_index, item)
        self._notify(ChangeAction.MOVE, new_items=(item,), old_items=(item,), new_index=new_index, old_index=old_index)

    def clear(self) -> None:
        self._items.clear()
        self._notify(ChangeAction.RESET)

    def reset(self, items: Iterable[T]) -> None:
        """Replace the whole content with a single reset notification."""
        self._items = list(items)
        self._notify(ChangeAction.RESET)

    def __repr__(self) -> str:
        return f"ObservableList({self._items!r})"

    def _notify(self, action: ChangeAction, **kwargs: Any) -> None:
        self.collection_changed.emit(self, CollectionChange(action, **kwargs))

"""
Live read-only views over observable collections.

``ObservableProjection`` mirrors one observable source through a projection
function, ``ObservableMultiProjection`` flattens a (possibly observable) list
of observable sources, and ``Projection`` is a lazy, non-live view over a
sized collection. Derived views own their items; callers must treat them as
read-only and call ``close()`` once the view is no longer needed, otherwise
the source keeps the view alive through its subscription.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any, Generic, Optional, TypeVar

from .observable import (
    ChangeAction,
    CollectionChange,
    Event,
    ObservableList,
    is_notifying,
    is_observable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = TypeVar("P")


def _index_by_identity(items: Sequence[Any], target: Any) -> int:
    for index, item in enumerate(items):
        if item is target:
            return index
    return -1


def _index_by_equality(items: Sequence[Any], target: Any) -> int:
    for index, item in enumerate(items):
        if item is target or item == target:
            return index
    return -1


class _DerivedView(Sequence[P]):
    """Shared plumbing: a private ObservableList re-published as read-only."""

    def __init__(self, items: Iterable[P] = ()) -> None:
        self._items: ObservableList[P] = ObservableList(items)
        self.collection_changed = Event()
        self.content_changed = Event()
        self._items.collection_changed.subscribe(self._forward_change)

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[P]:
        return iter(list(self._items))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self._items)!r})"

    def __enter__(self):
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    def close(self) -> None:
        raise NotImplementedError

    def _forward_change(self, _sender: object, change: CollectionChange) -> None:
        self.collection_changed.emit(self, change)

    def _watch(self, item: object) -> None:
        if is_notifying(item):
            item.property_changed.subscribe(self._on_item_changed)  # type: ignore[attr-defined]

    def _unwatch(self, item: object) -> None:
        if is_notifying(item):
            item.property_changed.unsubscribe(self._on_item_changed)  # type: ignore[attr-defined]

    def _on_item_changed(self, item: object, property_name: str) -> None:
        self.content_changed.emit(self, item, property_name)


class ObservableProjection(_DerivedView[P], Generic[T, P]):
    def __init__(
        self,
        source: Sequence[T],
        project: Callable[[T], P],
        back_map: Optional[Callable[[P, T], bool]] = None,
    ) -> None:
        if source is None or project is None:
            raise ValueError("source and project are required")
        if not is_observable(source):
            raise ValueError(f"{type(source).__name__} does not publish collection_changed; projection cannot follow it")
        super().__init__(project(item) for item in source)
        self._source = source
        self._project = project
        self.back_map = back_map
        for item in self._items:
            self._watch(item)
        source.collection_changed.subscribe(self._on_source_changed)  # type: ignore[attr-defined]

    def close(self) -> None:
        self._source.collection_changed.unsubscribe(self._on_source_changed)  # type: ignore[attr-defined]
        for item in self._items:
            self._unwatch(item)

    def _locate(self, source_item: T) -> int:
        if self.back_map is not None:
            for index, candidate in enumerate(self._items):
                if self.back_map(candidate, source_item):
                    return index
            return -1
        # Only valid for injective projections.
        return _index_by_equality(self._items, self._project(source_item))

    def _on_source_changed(self, _sender: object, change: CollectionChange) -> None:
        if change.action is ChangeAction.ADD:
            for offset, item in enumerate(change.new_items):
                projected = self._project(item)
                self._watch(projected)
                position = change.new_index + offset
                if position < 0 or position > len(self._items):
                    position = len(self._items)
                self._items.insert(position, projected)
        elif change.action is ChangeAction.REMOVE:
            for item in change.old_items:
                index = self._locate(item)
                if index < 0:
                    logger.warning("Projection has no item for removed source item %r", item)
                    continue
                self._unwatch(self._items[index])
                del self._items[index]
        elif change.action is ChangeAction.REPLACE:
            for offset, (old, new) in enumerate(zip(change.old_items, change.new_items)):
                index = self._locate(old)
                if index < 0 and 0 <= change.old_index + offset < len(self._items):
                    index = change.old_index + offset
                if index < 0:
                    logger.warning("Projection has no item for replaced source item %r", old)
                    continue
                self._unwatch(self._items[index])
                projected = self._project(new)
                self._watch(projected)
                self._items[index] = projected
        elif change.action is ChangeAction.MOVE:
            for offset, item in enumerate(change.old_items):
                index = self._locate(item)
                if index >= 0 and change.new_index >= 0:
                    self._items.move(index, change.new_index + offset)
        elif change.action is ChangeAction.RESET:
            for item in self._items:
                self._unwatch(item)
            projected_items = [self._project(item) for item in self._source]
            for item in projected_items:
                self._watch(item)
            self._items.reset(projected_items)


class ObservableMultiProjection(_DerivedView[P], Generic[T, P]):
    """
    Flattens several observable sources into one derived view.

    Every derived item is recorded against the source occurrence that produced
    it, so a departing source removes exactly the items it contributed, even
    when the projection is not injective or the same source is listed twice.
    """

    def __init__(self, sources: Iterable[Sequence[T]], project: Callable[[T], P]) -> None:
        if sources is None or project is None:
            raise ValueError("sources and project are required")
        super().__init__()
        self._project = project
        # parallel lists, one entry per occurrence of a source
        self._sources: list[Sequence[T]] = []
        self._segments: list[list[P]] = []
        self._occurrences: Counter[int] = Counter()
        self._sources_collection = sources if is_observable(sources) else None
        if self._sources_collection is not None:
            self._sources_collection.collection_changed.subscribe(self._on_sources_changed)  # type: ignore[attr-defined]
        for source in list(sources):
            self.add_source(source)

    @property
    def sources(self) -> tuple[Sequence[T], ...]:
        return tuple(self._sources)

    def add_source(self, source: Sequence[T]) -> None:
        if not is_observable(source):
            raise ValueError(f"{type(source).__name__} does not publish collection_changed; projection cannot follow it")
        if not self._occurrences[id(source)]:
            source.collection_changed.subscribe(self._on_source_changed)  # type: ignore[attr-defined]
        self._occurrences[id(source)] += 1
        segment = [self._project(item) for item in source]
        self._sources.append(source)
        self._segments.append(segment)
        for projected in segment:
            self._watch(projected)
            self._items.append(projected)

    def remove_source(self, source: Sequence[T]) -> None:
        """Detach one occurrence of ``source``; the subscription ends with the last one."""
        index = _index_by_identity(self._sources, source)
        if index < 0:
            return
        del self._sources[index]
        segment = self._segments.pop(index)
        self._occurrences[id(source)] -= 1
        if not self._occurrences[id(source)]:
            del self._occurrences[id(source)]
            source.collection_changed.unsubscribe(self._on_source_changed)  # type: ignore[attr-defined]
        for projected in segment:
            self._drop(projected)

    def close(self) -> None:
        if self._sources_collection is not None:
            self._sources_collection.collection_changed.unsubscribe(self._on_sources_changed)  # type: ignore[attr-defined]
        for source in {id(source): source for source in self._sources}.values():
            source.collection_changed.unsubscribe(self._on_source_changed)  # type: ignore[attr-defined]
        for item in self._items:
            self._unwatch(item)

    def _drop(self, projected: P) -> None:
        self._unwatch(projected)
        index = _index_by_identity(self._items, projected)
        if index >= 0:
            del self._items[index]

    def _segment_position(self, segment: list[P], item: T, hint: int) -> int:
        if 0 <= hint < len(segment):
            return hint
        return _index_by_equality(segment, self._project(item))

    def _on_source_changed(self, sender: Sequence[T], change: CollectionChange) -> None:
        segments = [segment for source, segment in zip(self._sources, self._segments) if source is sender]
        if not segments:
            logger.debug("Ignoring change from detached source %r", sender)
            return
        for segment in segments:
            self._apply_change(segment, sender, change)

    def _apply_change(self, segment: list[P], sender: Sequence[T], change: CollectionChange) -> None:
        if change.action is ChangeAction.ADD:
            for offset, item in enumerate(change.new_items):
                projected = self._project(item)
                position = change.new_index + offset
                if position < 0 or position > len(segment):
                    position = len(segment)
                segment.insert(position, projected)
                self._watch(projected)
                self._items.append(projected)
        elif change.action is ChangeAction.REMOVE:
            for item in change.old_items:
                position = self._segment_position(segment, item, change.old_index)
                if position < 0:
                    logger.warning("Multi-projection has no item for removed source item %r", item)
                    continue
                self._drop(segment.pop(position))
        elif change.action is ChangeAction.REPLACE:
            for offset, (old, new) in enumerate(zip(change.old_items, change.new_items)):
                position = self._segment_position(segment, old, change.old_index + offset)
                if position < 0:
                    continue
                previous = segment[position]
                projected = self._project(new)
                segment[position] = projected
                self._unwatch(previous)
                self._watch(projected)
                index = _index_by_identity(self._items, previous)
                if index >= 0:
                    self._items[index] = projected
                else:
                    self._items.append(projected)
        elif change.action is ChangeAction.MOVE:
            if 0 <= change.old_index < len(segment) and change.new_index >= 0:
                segment.insert(change.new_index, segment.pop(change.old_index))
        elif change.action is ChangeAction.RESET:
            for projected in segment:
                self._drop(projected)
            segment[:] = [self._project(item) for item in sender]
            for projected in segment:
                self._watch(projected)
                self._items.append(projected)

    def _on_sources_changed(self, sender: Sequence[Sequence[T]], change: CollectionChange) -> None:
        if change.action in (ChangeAction.REMOVE, ChangeAction.REPLACE):
            for source in change.old_items:
                self.remove_source(source)
        if change.action in (ChangeAction.ADD, ChangeAction.REPLACE):
            for source in change.new_items:
                self.add_source(source)
        elif change.action is ChangeAction.RESET:
            current = list(sender)
            wanted = Counter(id(source) for source in current)
            for source in list(self._sources):
                if wanted[id(source)]:
                    wanted[id(source)] -= 1
                else:
                    self.remove_source(source)
            kept = Counter(id(source) for source in self._sources)
            for source in current:
                if kept[id(source)]:
                    kept[id(source)] -= 1
                else:
                    self.add_source(source)


class Projection(Sequence[P], Generic[T, P]):
    """Lazy view over a sized collection; the projection runs on every access."""

    def __init__(self, source: Sequence[T], project: Callable[[T], P]) -> None:
        if source is None or project is None:
            raise ValueError("source and project are required")
        self._source = source
        self._project = project

    def __len__(self) -> int:
        return len(self._source)

    def __iter__(self) -> Iterator[P]:
        for item in self._source:
            yield self._project(item)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._project(item) for item in self._source[index]]
        return self._project(self._source[index])


def project(
    source: Sequence[T],
    fn: Callable[[T], P],
    back_map: Optional[Callable[[P, T], bool]] = None,
) -> ObservableProjection[T, P]:
    return ObservableProjection(source, fn, back_map)


def multi_project(sources: Iterable[Sequence[T]], fn: Callable[[T], P]) -> ObservableMultiProjection[T, P]:
    return ObservableMultiProjection(sources, fn)


def as_collection(source: Sequence[T], fn: Callable[[T], P]) -> Projection[T, P]:
    return Projection(source, fn)


def single_or_none(values: Iterable[T]) -> Optional[T]:
    """Return the only item, or None when there are zero or several."""
    iterator = iter(values)
    first = next(iterator, _MISSING)
    if first is _MISSING:
        return None
    if next(iterator, _MISSING) is not _MISSING:
        return None
    return first  # type: ignore[return-value]


def index_of_first(values: Iterable[T], predicate: Callable[[T], bool]) -> int:
    for index, item in enumerate(values):
        if predicate(item):
            return index
    return -1


_MISSING: Any = object()

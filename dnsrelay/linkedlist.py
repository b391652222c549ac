"""A doubly linked list whose elements know which list holds them."""

from __future__ import annotations

from typing import Generic, Iterator, Optional, TypeVar

V = TypeVar("V")


class Elem(Generic[V]):
    """A list element carrying ``value``; it belongs to at most one list."""

    __slots__ = ("value", "_prev", "_next", "_list")

    def __init__(self, value: V) -> None:
        self.value = value
        self._prev: Optional[Elem[V]] = None
        self._next: Optional[Elem[V]] = None
        self._list: Optional[LinkedList[V]] = None

    def prev(self) -> Optional[Elem[V]]:
        """Return the element before this one, or None."""
        return self._prev

    def next(self) -> Optional[Elem[V]]:
        """Return the element after this one, or None."""
        return self._next

    def _ensure_free(self) -> None:
        if self._prev is not None or self._next is not None or self._list is not None:
            raise ValueError("element is in use")

    def __repr__(self) -> str:
        return f"Elem({self.value!r})"


class LinkedList(Generic[V]):
    """Doubly linked list of :class:`Elem` nodes."""

    __slots__ = ("_front", "_back", "_length")

    def __init__(self) -> None:
        self._front: Optional[Elem[V]] = None
        self._back: Optional[Elem[V]] = None
        self._length = 0

    def front(self) -> Optional[Elem[V]]:
        """Return the first element, or None if the list is empty."""
        return self._front

    def back(self) -> Optional[Elem[V]]:
        """Return the last element, or None if the list is empty."""
        return self._back

    def __len__(self) -> int:
        return self._length

    def __iter__(self) -> Iterator[V]:
        e = self._front
        while e is not None:
            yield e.value
            e = e._next

    def push_front(self, e: Elem[V]) -> Elem[V]:
        """Insert a free element at the front and return it."""
        e._ensure_free()
        self._length += 1
        e._list = self
        if self._front is None:
            self._front = e
            self._back = e
        else:
            e._next = self._front
            self._front._prev = e
            self._front = e
        return e

    def push_back(self, e: Elem[V]) -> Elem[V]:
        """Insert a free element at the back and return it."""
        e._ensure_free()
        self._length += 1
        e._list = self
        if self._back is None:
            self._front = e
            self._back = e
        else:
            e._prev = self._back
            self._back._next = e
            self._back = e
        return e

    def pop_elem(self, e: Elem[V]) -> Elem[V]:
        """Unlink ``e`` from this list and return it as a free element."""
        if e._list is not self:
            raise ValueError("element does not belong to this list")
        self._length -= 1
        if e._prev is not None:
            e._prev._next = e._next
        if e._next is not None:
            e._next._prev = e._prev
        if e is self._front:
            self._front = e._next
        if e is self._back:
            self._back = e._prev
        e._prev = e._next = None
        e._list = None
        return e
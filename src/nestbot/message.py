from __future__ import annotations

import weakref
from typing import Iterable, Union

DEFAULT_PREFIX = "!"


class Literal:
    """A leaf argument holding plain text."""

    __slots__ = ("_text", "_parent", "__weakref__")

    def __init__(self, text: str) -> None:
        self._text = text
        self._parent: weakref.ReferenceType[Invocation] | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def parent(self) -> "Invocation | None":
        return self._parent() if self._parent is not None else None

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Literal) and other._text == self._text

    def __hash__(self) -> int:
        return hash(("literal", self._text))

    def __repr__(self) -> str:
        return f"Literal({self._text!r})"

    def __str__(self) -> str:
        return self._text


class Invocation:
    """A composite node: a named operation and its arguments.

    The first child, when it is a :class:`Literal`, is the keyword. Children are
    frozen on construction and each child keeps a weak reference back to this
    node. Equality is structural, parents are ignored.
    """

    __slots__ = ("_children", "_parent", "_source", "__weakref__")

    def __init__(self, children: Iterable["Message"] = (), source: str | None = None) -> None:
        self._children: tuple[Message, ...] = tuple(children)
        self._source = source
        self._parent: weakref.ReferenceType[Invocation] | None = None
        for child in self._children:
            child._parent = weakref.ref(self)

    @property
    def children(self) -> tuple["Message", ...]:
        return self._children

    @property
    def source(self) -> str | None:
        """The text this node was parsed from, if it came from the tokenizer."""
        return self._source

    @property
    def parent(self) -> "Invocation | None":
        return self._parent() if self._parent is not None else None

    @property
    def keyword(self) -> str | None:
        if self._children and isinstance(self._children[0], Literal):
            return self._children[0].text
        return None

    def is_command(self, name: str, prefix: str = DEFAULT_PREFIX) -> bool:
        keyword = self.keyword
        if keyword is None:
            return False
        return keyword == name or keyword == prefix + name

    def depth(self) -> int:
        level = 0
        node = self.parent
        while node is not None:
            level += 1
            node = node.parent
        return level

    def __len__(self) -> int:
        return len(self._children)

    def __iter__(self):
        return iter(self._children)

    def __getitem__(self, index: int) -> "Message":
        return self._children[index]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Invocation) and other._children == self._children

    def __hash__(self) -> int:
        return hash(("invocation", self._children))

    def __repr__(self) -> str:
        return f"Invocation({list(self._children)!r})"

    def __str__(self) -> str:
        parts = ["{"]
        parts.extend(str(child) for child in self._children)
        parts.append("}")
        return " ".join(parts)


Message = Union[Literal, Invocation]

"""Turns a line of chat text into an :class:`~nestbot.message.Invocation` tree.

Grammar, checked in this order for every character:

* ``\\`` followed by one of ``" \\ { }`` emits the second character. Inside an
  open nesting level the backslash is kept too, so the nested text still
  carries the escape when it is parsed again.
* ``}`` outside quotes closes a nesting level. When the outermost level closes,
  the text collected since the matching ``{`` is parsed into a nested
  invocation.
* ``{`` outside quotes opens a level. Only inner braces are collected.
* The prefix character (``!``) after whitespace, anywhere but in the first
  word, opens a level implicitly. There is no implicit close: the nested
  invocation runs until an explicit ``}`` or the end of the line, so
  ``!outer a !inner b c`` hands ``b c`` to ``!inner``, not to ``!outer``.
  Wrap the inner command in braces (``!outer a {!inner b} c``) to bound it.
* While a level is open every character is collected verbatim.
* ``"`` at a word boundary starts or ends a quoted argument that keeps its
  whitespace. Quotes inside a word are literal.
* Whitespace ends a word. A word starting with the prefix that is not the
  first word becomes a one-element invocation of its own.

The tokenizer never fails. Unterminated quotes and levels are flushed as if
the line ended on a word boundary.
"""
from __future__ import annotations

from nestbot.message import DEFAULT_PREFIX, Invocation, Literal, Message

ESCAPABLE = frozenset('"\\{}')


def parse(text: str, prefix: str = DEFAULT_PREFIX) -> Invocation:
    source = text.strip()
    return Invocation(_split(source, prefix), source=source)


def _split(message: str, prefix: str) -> list[Message]:
    nodes: list[Message] = []
    word: list[str] = []
    level = 0
    first_word = True
    in_quote = False
    length = len(message)
    i = 0

    while i < length:
        c = message[i]

        if c == "\\" and i + 1 < length and message[i + 1] in ESCAPABLE:
            if level > 0:
                word.append(c)
            word.append(message[i + 1])
            i += 2
            continue

        if not in_quote and level > 0 and c == "}":
            level -= 1
            if level == 0:
                nodes.append(parse("".join(word), prefix))
                word = []
            else:
                word.append(c)
        elif not in_quote and c == "{":
            if level > 0:
                word.append(c)
            level += 1
        elif not in_quote and not first_word and c == prefix and message[i - 1].isspace():
            word.append(c)
            level += 1
        elif level > 0:
            word.append(c)
        elif c == '"':
            if in_quote:
                if i + 1 == length or message[i + 1].isspace():
                    in_quote = False
                    nodes.append(Literal("".join(word)))
                    word = []
                else:
                    word.append(c)
            elif i == 0 or message[i - 1].isspace():
                in_quote = True
            else:
                word.append(c)
        elif not in_quote and (c.isspace() or i + 1 == length):
            if not c.isspace():
                word.append(c)
            _flush(nodes, "".join(word), level, first_word, prefix)
            word = []
            first_word = False
        else:
            word.append(c)
        i += 1

    _flush(nodes, "".join(word), level, first_word, prefix)
    return nodes


def _flush(nodes: list[Message], word: str, level: int, first_word: bool, prefix: str) -> None:
    if not word:
        return
    if level > 0:
        nodes.append(parse(word, prefix))
    elif not first_word and word.startswith(prefix):
        nodes.append(Invocation([Literal(word)], source=word))
    else:
        nodes.append(Literal(word))

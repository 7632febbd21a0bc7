"""Ruby block keyword detection for script lines.

The keyword regexes follow the ones Haml uses to decide whether a script
opens, continues, or closes a block.
"""

from __future__ import annotations

import re

START_BLOCK_KEYWORDS = frozenset({"if", "unless", "case", "begin", "for", "until", "while"})
MID_BLOCK_KEYWORDS = frozenset({"else", "elsif", "when", "rescue", "ensure"})
LOOP_KEYWORDS = frozenset({"for", "until", "while"})

_START_BLOCK_KEYWORD_SOURCE = r"(?:\w+(?:,\s*\w+)*\s*=\s*)?(if|begin|case|unless)"
_BLOCK_KEYWORD_RE = re.compile(
    rf"^-?\s*(?:(else|elsif|rescue|ensure|end|when)|{_START_BLOCK_KEYWORD_SOURCE})\b",
    re.MULTILINE,
)
_FIRST_WORD_RE = re.compile(r"\A\s*(\S+)\s+")
_ANONYMOUS_BLOCK_RE = re.compile(r"\bdo\s*(\|\s*[^|]*\s*\|)?(\s*#.*)?\Z")


def block_keyword(text: str) -> str | None:
    """Return the block keyword a script line starts with, if any."""

    # Haml's own regex does not know about loops
    first_word = _FIRST_WORD_RE.match(text)
    if first_word is not None and first_word.group(1) in LOOP_KEYWORDS:
        return first_word.group(1)

    match = _BLOCK_KEYWORD_RE.search(text)
    if match is None:
        return None
    return match.group(1) or match.group(2)


def anonymous_block(text: str) -> bool:
    return _ANONYMOUS_BLOCK_RE.search(text) is not None


def start_block_keyword(text: str) -> bool:
    return block_keyword(text) in START_BLOCK_KEYWORDS


def mid_block_keyword(text: str) -> bool:
    return block_keyword(text) in MID_BLOCK_KEYWORDS


def opens_block(text: str) -> bool:
    """True when the script needs an implicit `end` after its nested lines."""

    return anonymous_block(text) or start_block_keyword(text)

"""Wikilink and hashtag extraction from note bodies.

Pure functions over raw text: no I/O, and an empty or missing body
always yields an empty list.
"""
import re
from typing import Iterable, List, Optional

# Backslashes escaping a bracket pair (`\[[` or `\[\[`) are dropped before scanning
ESCAPED_OPEN_PATTERN = re.compile(r"\\+\[\\*\[")
ESCAPED_CLOSE_PATTERN = re.compile(r"\\+\]\\*\]")

# [[Title]], non-greedy, may not span a "]]"
WIKILINK_PATTERN = re.compile(r"\[\[(.+?)\]\]")

# #tag: ASCII word characters or Hangul syllables, no length cap
HASHTAG_PATTERN = re.compile(r"#([A-Za-z0-9_가-힣]+)")


def unique_in_order(items: Iterable[str]) -> List[str]:
    """De-duplicate keeping first-seen order."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def normalize_escaped_brackets(body: Optional[str]) -> str:
    r"""Turn ``\[\[`` / ``\]\]`` back into plain brackets.

    Editors escape brackets when serializing markdown, so a stored body may
    contain ``\[\[Title\]\]`` for a link the user typed. Normalizing means
    such text is scanned as a real link.
    """
    if not body:
        return ""
    body = ESCAPED_OPEN_PATTERN.sub("[[", body)
    return ESCAPED_CLOSE_PATTERN.sub("]]", body)


def extract_wikilinks(body: Optional[str], unique: bool = False) -> List[str]:
    """Return the trimmed titles of every ``[[...]]`` in the body.

    Args:
        body: Note body (markup source).
        unique: Drop repeated titles, keeping first-seen order.

    Returns:
        Titles in order of appearance. Blank titles (``[[ ]]``) are skipped.
    """
    normalized = normalize_escaped_brackets(body)
    titles = [m.group(1).strip() for m in WIKILINK_PATTERN.finditer(normalized)]
    titles = [t for t in titles if t]
    return unique_in_order(titles) if unique else titles


def extract_hashtags(body: Optional[str], unique: bool = False) -> List[str]:
    """Return tag names (without ``#``) found in the body."""
    if not body:
        return []
    names = HASHTAG_PATTERN.findall(body)
    return unique_in_order(names) if unique else names

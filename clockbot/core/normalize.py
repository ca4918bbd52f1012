"""Activity-name normalizer — pure text transformation, no I/O.

"WorkSchool" → "work-school", "schoool" → "school", "workkkkk" → "work".
Used for alias keys so that lookups are insensitive to case and stutter.
"""

from __future__ import annotations

import re

_RE_SPACES = re.compile(r"\s+")
_RE_HYPHENS = re.compile(r"-+")


def collapse_repeated_chars(text: str) -> str:
    """Collapse runs of identical characters.

    Runs of one or two are kept, exactly three become two, four or more
    become one.
    """
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        run = 1
        while i + run < len(text) and text[i + run] == ch:
            run += 1
        if run < 3:
            out.append(ch * run)
        elif run == 3:
            out.append(ch * 2)
        else:
            out.append(ch)
        i += run
    return "".join(out)


def split_camel_case(text: str) -> str:
    """Insert hyphens at camelCase / PascalCase word boundaries."""
    out: list[str] = []
    for i, ch in enumerate(text):
        if i > 0 and ch.isupper():
            prev = text[i - 1]
            nxt = text[i + 1] if i + 1 < len(text) else ""
            if prev.islower() or (prev.isupper() and nxt.islower()):
                out.append("-")
        out.append(ch)
    return "".join(out)


def normalize_activity(raw: str) -> str:
    """Return the normalized form of an activity name or alias key."""
    trimmed = raw.strip()
    if not trimmed:
        return ""
    text = split_camel_case(collapse_repeated_chars(trimmed)).lower()
    text = _RE_SPACES.sub(" ", text)
    text = _RE_HYPHENS.sub("-", text)
    return text.strip(" -")

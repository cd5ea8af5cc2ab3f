"""Low-level text helpers used by the prompt builder and the extraction layers.

No dependency on schemas, models, or any other project module.
"""

POEM_LINE_WIDTH = 60


def normalize_whitespace(text: str) -> str:
    return " ".join((text or "").split()).strip()


def word_count(text: str) -> int:
    return len((text or "").split())


def first_words(text: str, limit: int) -> str:
    return " ".join((text or "").split()[:limit])


def clip(text: str, limit: int) -> str:
    """First *limit* characters of *text*."""
    return (text or "")[:limit]


def format_poem_lines(poem: str, width: int = POEM_LINE_WIDTH) -> str:
    """Wrap each poem line to *width* columns.

    Long lines break at the last space inside the first *width* characters,
    or hard-break when no usable space exists. Short lines and blank lines
    pass through untouched so stanza breaks survive.
    """
    formatted = []
    for line in (poem or "").splitlines():
        if len(line) <= width:
            formatted.append(line)
            continue

        remaining = line
        while remaining:
            if len(remaining) <= width:
                formatted.append(remaining)
                break
            break_point = width
            last_space = remaining[:width].rfind(" ")
            if last_space > 0:
                break_point = last_space
            formatted.append(remaining[:break_point].strip())
            remaining = remaining[break_point:].strip()

    return "\n".join(formatted)


def long_words(text: str, min_len: int = 4) -> list[str]:
    """Whitespace-separated tokens of at least *min_len* characters, in order."""
    return [w for w in (text or "").split() if len(w) >= min_len]

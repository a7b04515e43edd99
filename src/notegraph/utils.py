"""Utility functions for notegraph."""


def safe_filename(title: str, fallback: str = "Untitled") -> str:
    """Turn a note title into a file name usable on every platform.

    Path separators and characters that Windows or macOS reject are
    replaced by spaces, runs of whitespace collapse to one space, and
    trailing dots/spaces are stripped. Unicode letters (e.g. Hangul) are kept.

    Examples:
        "Plan: Q3 / Budget" -> "Plan Q3 Budget"
        "  " -> "Untitled"

    Args:
        title: The note title.
        fallback: Name used when nothing printable is left.

    Returns:
        File name without extension.
    """
    if not title:
        return fallback

    forbidden = '<>:"/\\|?*'
    cleaned = "".join(" " if c in forbidden or ord(c) < 32 else c for c in title)
    cleaned = " ".join(cleaned.split()).rstrip(". ")
    return cleaned or fallback


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Use together with ``escape="\\\\"`` on the SQLAlchemy ``like``/``ilike``
    call.

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\\\% complete'
        >>> escape_like_pattern("file_name")
        'file\\\\_name'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)

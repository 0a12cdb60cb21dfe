"""Title normalization for duplicate detection."""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9 ]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """Canonicalize an issue title for exact-match duplicate comparison.

    Lower-cases the title, drops every character outside ``[a-z0-9 ]``,
    collapses whitespace runs to a single space and trims the ends.

    Args:
        title: The raw issue title.

    Returns:
        The normalized title. An empty title normalizes to "".
    """
    text = _NON_ALNUM.sub("", title.lower())
    return _WHITESPACE.sub(" ", text).strip()

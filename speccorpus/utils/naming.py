"""
Topic normalization and document naming.

The normalized identifier is the uniqueness key of the registry; the
file name is the name of the persisted document. Both derive
deterministically from the topic statement.
"""

import re
from typing import Iterable, List, Optional

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


class TopicNormalizer:
    """
    Derives topic identifiers and file names from topic statements.

    Normalization: lowercase, split on anything that is not a letter or
    digit, drop stopwords, join with hyphens. Normalizing an identifier
    returns the identifier unchanged, so lookups accept either form.
    """

    def __init__(self, stopwords: Optional[Iterable[str]] = None, max_file_words: int = 3):
        """
        Args:
            stopwords: Words removed during normalization
            max_file_words: Maximum number of words in a file name
        """
        if max_file_words < 1:
            raise ValueError("max_file_words must be at least 1")
        self.stopwords = frozenset(w.lower() for w in (stopwords or ()))
        self.max_file_words = max_file_words

    def tokens(self, statement: str) -> List[str]:
        """Content words of the statement, in order."""
        raw = _TOKEN_SPLIT.split(statement.lower())
        return [t for t in raw if t and t not in self.stopwords]

    def normalize(self, statement: str) -> str:
        """
        Normalized topic identifier.

        Raises:
            ValueError: If the statement has no content words
        """
        words = self.tokens(statement)
        if not words:
            raise ValueError(f"Topic statement has no content words: '{statement}'")
        return "-".join(words)

    def file_name(self, statement: str) -> str:
        """Kebab-cased document name of at most `max_file_words` words."""
        words = self.tokens(statement)
        if not words:
            raise ValueError(f"Topic statement has no content words: '{statement}'")
        return "-".join(words[: self.max_file_words])

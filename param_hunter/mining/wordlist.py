"""
Wordlist handling for parameter mining.
"""

import re
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Union

from ..core.logger import get_component_logger

logger = get_component_logger("mining.wordlist")

_NON_WORD = re.compile(r"[^a-zA-Z0-9\s_-]")
_WHITESPACE = re.compile(r"\s+")


def read_wordlist(path: Union[str, Path]) -> List[str]:
    """Read a wordlist file, trimming lines and dropping blanks and duplicates."""
    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        return list(Wordlist(f.read().splitlines()))


def extract_words(text: str, min_length: int = 3) -> List[str]:
    """Unique words of ``text`` made of letters, digits, dashes and underscores."""
    cleaned = _WHITESPACE.sub(" ", _NON_WORD.sub(" ", text or "")).strip()
    words = (word for word in cleaned.split(" ") if len(word) >= min_length)
    return list(dict.fromkeys(words))


class Wordlist:
    """
    Ordered set of candidate parameter names.

    Duplicates collapse to their first occurrence, and insertion order
    decides which chunk a name lands in.
    """

    def __init__(self, words: Iterable[str] = ()):
        self._words: Dict[str, None] = {}
        self.extend(words)

    @classmethod
    def from_files(cls, paths: Iterable[Union[str, Path]]) -> "Wordlist":
        wordlist = cls()
        for path in paths:
            added = wordlist.extend(read_wordlist(path))
            logger.debug(f"Added {added} words from {path}")
        return wordlist

    def add(self, word: str) -> bool:
        """Add one word; returns False for blanks and duplicates."""
        word = word.strip()
        if not word or word in self._words:
            return False
        self._words[word] = None
        return True

    def extend(self, words: Iterable[str]) -> int:
        """Add several words and return how many were new."""
        return sum(1 for word in words if self.add(word))

    def filter(self, predicate: Callable[[str], bool]) -> "Wordlist":
        return Wordlist(word for word in self if predicate(word))

    def map(self, transform: Callable[[str], str]) -> "Wordlist":
        return Wordlist(transform(word) for word in self)

    def to_list(self) -> List[str]:
        return list(self._words)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._words))

    def __len__(self) -> int:
        return len(self._words)

    def __contains__(self, word: object) -> bool:
        return word in self._words

    def __repr__(self):
        return f"Wordlist({len(self)} words)"

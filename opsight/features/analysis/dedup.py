"""Duplicate checks for generated titles."""

from typing import Iterable, Protocol


class DuplicateCheck(Protocol):
    def is_duplicate(self, candidate: str, existing: Iterable[str]) -> bool: ...


class TitlePrefixMatcher:
    """
    Fuzzy title match tolerant of phrasing drift in model output.

    A candidate is a duplicate when any existing title contains the
    candidate's first `prefix_length` characters, ignoring case.
    """

    def __init__(self, prefix_length: int):
        if prefix_length <= 0:
            raise ValueError("prefix_length must be positive")
        self.prefix_length = prefix_length

    def is_duplicate(self, candidate: str, existing: Iterable[str]) -> bool:
        needle = candidate[: self.prefix_length].strip().lower()
        if not needle:
            return False
        return any(needle in title.lower() for title in existing)

"""Disclaimer accumulation and outbound citation filtering."""

from typing import Iterable, Iterator, List, Optional

ALLOWED_CITATION_PREFIXES = ("menu:", "allergens:", "policies:")
FALLBACK_CITATION = "policies:ops"
CITATIONS_UNAVAILABLE = "Citations unavailable from the model output; falling back to policy reference."


class DisclaimerSet:
    """Ordered, de-duplicating collection of disclaimers for one response."""

    def __init__(self):
        self._items: List[str] = []

    def add(self, value: Optional[str]) -> None:
        if not value:
            return
        trimmed = value.strip()
        if trimmed and trimmed not in self._items:
            self._items.append(trimmed)

    def extend(self, values: Iterable[Optional[str]]) -> None:
        for value in values:
            self.add(value)

    def to_list(self) -> List[str]:
        return list(self._items)

    def __contains__(self, value: str) -> bool:
        return value in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


def sanitise_citations(citations: Iterable[str], disclaimers: DisclaimerSet) -> List[str]:
    """
    Keep only citations with an allowed prefix.

    When none survive, a disclaimer is added and the policy fallback is
    returned on its own.
    """
    filtered = [
        citation for citation in citations
        if isinstance(citation, str) and citation.startswith(ALLOWED_CITATION_PREFIXES)
    ]
    if not filtered:
        disclaimers.add(CITATIONS_UNAVAILABLE)
        return [FALLBACK_CITATION]
    return filtered

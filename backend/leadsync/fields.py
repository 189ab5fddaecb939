"""Ordered header/value container for sheet-sourced lead data."""

from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple


class FieldBag:
    """
    Ordered sequence of ``(header, value)`` pairs.

    Sheet headers are tenant-controlled, so they are kept verbatim and in
    column order. Exact duplicate headers are kept as separate entries;
    lookups return the first non-empty match.
    """

    __slots__ = ("_pairs",)

    def __init__(self, pairs: Optional[Iterable[Sequence[str]]] = None):
        self._pairs: List[Tuple[str, str]] = [
            (str(header), "" if value is None else str(value))
            for header, value in (pairs or [])
        ]

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "FieldBag":
        return cls(data.items())

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other) -> bool:
        if isinstance(other, FieldBag):
            return self._pairs == other._pairs
        return NotImplemented

    def __repr__(self) -> str:
        return f"FieldBag({self._pairs!r})"

    def headers(self) -> List[str]:
        return [header for header, _ in self._pairs]

    def values(self) -> List[str]:
        return [value for _, value in self._pairs]

    def get(self, *aliases: str, default: str = "") -> str:
        """Return the first non-empty value under any of ``aliases`` (exact match, alias order)."""
        for alias in aliases:
            for header, value in self._pairs:
                if header == alias and value.strip():
                    return value
        return default

    def get_ci(self, *aliases: str, default: str = "") -> str:
        """Case- and whitespace-insensitive variant of :meth:`get`."""
        for alias in aliases:
            wanted = alias.strip().lower()
            for header, value in self._pairs:
                if header.strip().lower() == wanted and value.strip():
                    return value
        return default

    def non_empty_count(self) -> int:
        return sum(1 for _, value in self._pairs if value.strip())

    def to_pairs(self) -> List[List[str]]:
        """JSON-friendly representation used for storage."""
        return [[header, value] for header, value in self._pairs]

    def to_dict(self) -> Dict[str, str]:
        """Flatten to a dict; on duplicate headers the first non-empty value wins."""
        flat: Dict[str, str] = {}
        for header, value in self._pairs:
            if header not in flat or (not flat[header].strip() and value.strip()):
                flat[header] = value
        return flat

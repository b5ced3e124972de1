"""Query string parameters.

Query values feed handler binding: scalar parameters read the first value
for their name, ``list[...]`` parameters on GET and HEAD read every value.
"""

from collections.abc import Iterator, Mapping
from urllib.parse import parse_qsl


class QueryParams(Mapping[str, str]):
    """Parsed query string; the mapping view exposes each key's first value."""

    __slots__ = ("_values", "raw")

    def __init__(self, query_string: bytes = b"") -> None:
        self.raw = query_string
        values: dict[str, list[str]] = {}
        pairs = parse_qsl(query_string.decode("latin-1"), keep_blank_values=True)
        for key, value in pairs:
            values.setdefault(key, []).append(value)
        self._values = values

    def __getitem__(self, key: str) -> str:
        return self._values[key][0]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"QueryParams({self.raw!r})"

    def get_list(self, key: str) -> list[str]:
        """Every value sent for *key*, in order; empty when absent."""
        return list(self._values.get(key, ()))

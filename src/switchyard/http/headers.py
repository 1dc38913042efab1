"""Immutable, case-insensitive HTTP headers.

Accepts ``(name, value)`` string pairs in arrival order, or a plain
mapping. Names are case-folded once on construction; iteration yields
the folded names, so ``dict(headers)`` has lower-case keys.
"""

from collections.abc import Iterable, Iterator, Mapping


class Headers(Mapping[str, str]):
    """Read-only header view used by ``RequestContext``.

    ``headers["X-Api-Key"]`` returns the first value sent under that
    name in any case; ``get_list`` returns every value.
    """

    __slots__ = ("_pairs",)

    def __init__(self, raw: Iterable[tuple[str, str]] | Mapping[str, str] = ()) -> None:
        pairs = raw.items() if isinstance(raw, Mapping) else raw
        object.__setattr__(self, "_pairs", tuple((str(k).lower(), str(v)) for k, v in pairs))

    def __setattr__(self, name: str, value: object) -> None:
        msg = "Headers is immutable"
        raise AttributeError(msg)

    def __getitem__(self, key: str) -> str:
        folded = key.lower()
        for name, value in self._pairs:
            if name == folded:
                return value
        raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and any(name == key.lower() for name, _ in self._pairs)

    def __iter__(self) -> Iterator[str]:
        return iter(dict.fromkeys(name for name, _ in self._pairs))

    def __len__(self) -> int:
        return len(dict.fromkeys(name for name, _ in self._pairs))

    def __repr__(self) -> str:
        return f"Headers({self._pairs!r})"

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        try:
            return self[key]
        except KeyError:
            return default

    def get_list(self, key: str) -> list[str]:
        """Return every value sent under *key*, in arrival order."""
        folded = key.lower()
        return [value for name, value in self._pairs if name == folded]

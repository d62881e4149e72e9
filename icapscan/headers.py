from collections import UserDict
from typing import Any, Iterator, Optional


class HeaderDict(UserDict):
    """Header mapping with case-insensitive lookup.

    Keys keep the spelling and insertion order they were first seen with;
    ``headers["preview"]`` and ``headers["Preview"]`` address the same entry.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._names = {}
        super().__init__(*args, **kwargs)

    def __setitem__(self, key: str, value: str) -> None:
        lowered = key.lower()
        self._names.setdefault(lowered, key)
        self.data[lowered] = value

    def __getitem__(self, key: str) -> str:
        return self.data[key.lower()]

    def __delitem__(self, key: str) -> None:
        lowered = key.lower()
        del self.data[lowered]
        del self._names[lowered]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __repr__(self) -> str:
        return f"HeaderDict({dict(self.items())!r})"

    def add(self, key: str, value: str) -> None:
        """Add a header, folding repeated names into one comma-separated value."""
        existing: Optional[str] = self.data.get(key.lower())
        if existing is None:
            self[key] = value
        else:
            self[key] = f"{existing}, {value}"

    def add_line(self, line: str) -> Optional[str]:
        """Parse a ``Name: value`` line into the mapping.

        Returns:
            The header name, or None if the line has no colon.
        """
        if ":" not in line:
            return None
        key, value = line.split(":", 1)
        key = key.strip()
        self.add(key, value.strip())
        return key

class DedupFilter:
    """Seen-key set for one scan pass.

    Keys repeat when Claude streams several lines for one API call. The set
    is reset at the start of every pass and never carried over.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def reset(self) -> None:
        self._seen.clear()

    def admit(self, key: str | None) -> bool:
        """True for the first occurrence of a key and for keyless records."""
        if key is None:
            return True
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

"""In-memory symbol table fed by the indexer."""

from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator

APPEND_CHUNK_SIZE = 4096


@dataclass(frozen=True)
class SymbolEntry:
    name: str
    kind: str
    file: str
    line: int
    exported: bool = False

    @property
    def entity_id(self) -> str:
        return f"{self.kind}:{self.file}#{self.name}"


def append_in_chunks(
    target: list,
    items: Iterable,
    chunk_size: int = APPEND_CHUNK_SIZE,
) -> int:
    """Grow ``target`` from ``items`` one bounded chunk at a time.

    Works for any batch size; nothing is unpacked into call arguments.
    """
    iterator = iter(items)
    added = 0
    while True:
        chunk = list(islice(iterator, max(1, chunk_size)))
        if not chunk:
            return added
        target.extend(chunk)
        added += len(chunk)


class SymbolTable:
    """Symbols indexed by name and by file."""

    def __init__(self):
        self._entries: list[SymbolEntry] = []
        self._by_name: dict[str, list[int]] = {}
        self._by_file: dict[str, list[int]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SymbolEntry]:
        return iter(self._entries)

    def add(self, entry: SymbolEntry) -> None:
        self.add_batch([entry])

    def add_batch(self, entries: Iterable[SymbolEntry]) -> int:
        """Append a batch of entries; returns how many were added."""
        start = len(self._entries)
        added = append_in_chunks(self._entries, entries)
        for index in range(start, start + added):
            entry = self._entries[index]
            self._by_name.setdefault(entry.name, []).append(index)
            self._by_file.setdefault(entry.file, []).append(index)
        return added

    def find(self, name: str) -> list[SymbolEntry]:
        return [self._entries[i] for i in self._by_name.get(name, [])]

    def in_file(self, file: str) -> list[SymbolEntry]:
        return [self._entries[i] for i in self._by_file.get(file, [])]

    def exported(self) -> list[SymbolEntry]:
        return [entry for entry in self._entries if entry.exported]

    def name_by_id(self) -> dict[str, str]:
        """Display names keyed by entity id, for definition biasing."""
        return {entry.entity_id: entry.name for entry in self._entries}

from typing import Iterator, Optional
from ..schema.sandbox import SandboxRecord


class SandboxRegistry:
    """In-memory map of tracked sandboxes keyed by provider id.

    Each method is a single synchronous step, so callers running on one event
    loop never observe a half-applied mutation.
    """

    def __init__(self):
        self.__records: dict[str, SandboxRecord] = {}

    def get(self, sandbox_id: str) -> Optional[SandboxRecord]:
        return self.__records.get(sandbox_id)

    def insert(self, record: SandboxRecord) -> SandboxRecord:
        """Insert `record` unless its id is already tracked; return the tracked one."""
        existing = self.__records.get(record.id)
        if existing is not None:
            return existing
        self.__records[record.id] = record
        return record

    def remove(self, sandbox_id: str) -> Optional[SandboxRecord]:
        return self.__records.pop(sandbox_id, None)

    def ids(self) -> list[str]:
        return list(self.__records.keys())

    def records(self) -> list[SandboxRecord]:
        return list(self.__records.values())

    def __contains__(self, sandbox_id: object) -> bool:
        return sandbox_id in self.__records

    def __len__(self) -> int:
        return len(self.__records)

    def __iter__(self) -> Iterator[SandboxRecord]:
        return iter(self.records())

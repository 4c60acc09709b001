"""Base interface for event store backends."""
from abc import ABC, abstractmethod
from ..events.models import EventRecord


class EventStore(ABC):
    """Abstract interface for the time-bounded event log."""

    @abstractmethod
    async def append(self, record: EventRecord) -> EventRecord:
        """
        Store a record with a single unconditional put.

        Args:
            record: The record to store

        Returns:
            The stored record

        Raises:
            StorageError: If the backend rejects the write
        """
        pass

    @abstractmethod
    async def query_by_partition(
        self,
        partition_key: str,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[EventRecord]:
        """
        Read the unexpired records of one partition, ascending by sort key.

        Args:
            partition_key: Partition to read
            event_type: Only return records whose sort key starts with "<event_type>#"
            limit: Maximum number of records to return

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""

"""Abstract store interface.

Every backend (memory, SQLite, Gist, or a team's own Postgres/S3 adapter)
implements this interface. prledger_core depends on BaseStore, not on a
concrete backend, so the storage engine is a deployment choice.

Records are plain JSON-compatible dicts. The store never interprets them;
schema knowledge lives in prledger_core.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class StoreError(Exception):
    """Raised by a backend when a read or write could not be completed.

    ``retryable`` separates transient failures (timeouts, lock contention,
    rate limits) from permanent ones (bad credentials, corrupt data). Callers
    retry only the former.
    """

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class BaseStore(ABC):
    """Pluggable key/value persistence for findings and metrics buckets.

    Implementations must be safe to call from CI environments where no
    interactive credentials are available. All auth must happen via
    constructor arguments resolved at init time.
    """

    @abstractmethod
    def get(self, key: str) -> dict | None:
        """Return the record stored under key, or None if absent."""

    @abstractmethod
    def put(self, key: str, record: dict) -> None:
        """Store record under key, replacing any previous value."""

    @abstractmethod
    def scan(self, prefix: str) -> list[tuple[str, dict]]:
        """Return (key, record) pairs whose key starts with prefix, sorted by key.

        Returns an empty list if nothing matches; never raises for a miss.
        """

    @abstractmethod
    def put_many(self, records: dict[str, dict]) -> None:
        """Store several records atomically: either all are written or none are."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional: subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """

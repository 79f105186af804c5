"""
Store interface consumed by the importer.

The core only ever creates a database, connects, transacts tx-data and
reads the set of committed batch markers.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class TxReport:
    """Result of a successful transaction."""

    tx_id: int
    datoms: int
    tempids: dict[str, int] = field(default_factory=dict)


class Store(Protocol):
    """A transactional store.

    Implementations raise mbz_import.anomalies.StoreError on failure.
    Methods are blocking; the loader runs them in worker threads.
    """

    def create_database(self, name: str) -> bool:
        """Create the database if missing. Returns True if it was created."""
        ...

    def connect(self, name: str) -> Any:
        """Return a connection handle for a database."""
        ...

    def transact(self, conn: Any, tx_data: list[dict[str, Any]]) -> TxReport:
        """Commit tx-data atomically."""
        ...

    def query_markers(self, conn: Any, attr: str) -> set[str]:
        """All committed values of a marker attribute."""
        ...

"""
Chain Store: durable home for execution chain snapshots.

Behavioral Contract:
- Chains are stored whole, as JSON snapshots. A new snapshot replaces the old
  one; nothing is patched in place.
- Every snapshot carries a version, starting at 1. A replace must name the
  version it was derived from; a mismatch raises StaleChainError and leaves
  the stored snapshot untouched (optimistic concurrency).
- Queryable by anchor date and by chain id.
"""

import sqlite3
from datetime import date
from typing import List, Optional, Tuple

from chain_kernel.models.chain import ExecutionChain


class StaleChainError(Exception):
    """Raised when a replace is based on an outdated snapshot."""

    def __init__(self, chain_id: str, expected_version: int, current_version: int):
        self.chain_id = chain_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Chain {chain_id} is at version {current_version}, "
            f"update was based on version {expected_version}"
        )


class ChainNotFoundError(KeyError):
    """Raised when replacing a chain that was never stored."""

    def __init__(self, chain_id: str):
        self.chain_id = chain_id
        super().__init__(f"Chain not found: {chain_id}")


class ChainStore:
    """
    Versioned chain snapshot store.
    Prototype: SQLite. One connection, shared with the monitor and HTTP layer.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS chains (
                chain_id TEXT PRIMARY KEY,
                anchor_id TEXT NOT NULL,
                anchor_date TEXT NOT NULL,
                anchor_start TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                chain_json TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chains_anchor_date ON chains(anchor_date)
        """)
        self._conn.commit()

    def add(self, chain: ExecutionChain) -> int:
        """Store a freshly generated chain. Returns its version (1)."""
        try:
            self._conn.execute(
                """
                INSERT INTO chains (
                    chain_id, anchor_id, anchor_date, anchor_start, status, version, chain_json
                ) VALUES (?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    chain.chain_id,
                    chain.anchor_id,
                    chain.anchor.start.date().isoformat(),
                    chain.anchor.start.isoformat(),
                    chain.status.value,
                    chain.model_dump_json(),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Chain already stored: {chain.chain_id}") from e
        self._conn.commit()
        return 1

    def replace(self, chain: ExecutionChain, expected_version: int) -> int:
        """
        Swap in a new snapshot if the stored one is still at expected_version.
        Returns the new version.
        """
        cursor = self._conn.execute(
            """
            UPDATE chains
            SET status = ?, chain_json = ?, version = version + 1,
                updated_at = datetime('now')
            WHERE chain_id = ? AND version = ?
            """,
            (
                chain.status.value,
                chain.model_dump_json(),
                chain.chain_id,
                expected_version,
            ),
        )
        self._conn.commit()
        if cursor.rowcount == 1:
            return expected_version + 1

        current = self._current_version(chain.chain_id)
        if current is None:
            raise ChainNotFoundError(chain.chain_id)
        raise StaleChainError(chain.chain_id, expected_version, current)

    def _current_version(self, chain_id: str) -> Optional[int]:
        row = self._conn.execute(
            "SELECT version FROM chains WHERE chain_id = ?", (chain_id,)
        ).fetchone()
        return row["version"] if row else None

    def _deserialize(self, row: sqlite3.Row) -> ExecutionChain:
        return ExecutionChain.model_validate_json(row["chain_json"])

    def get(self, chain_id: str) -> Optional[ExecutionChain]:
        found = self.get_with_version(chain_id)
        return found[0] if found else None

    def get_with_version(self, chain_id: str) -> Optional[Tuple[ExecutionChain, int]]:
        """The current snapshot and the version a replace must be based on."""
        row = self._conn.execute(
            "SELECT chain_json, version FROM chains WHERE chain_id = ?", (chain_id,)
        ).fetchone()
        if not row:
            return None
        return self._deserialize(row), row["version"]

    def list_for_date(self, day: date) -> List[ExecutionChain]:
        """All chains whose anchor starts on the given date, by anchor start."""
        rows = self._conn.execute(
            "SELECT chain_json FROM chains WHERE anchor_date = ? ORDER BY anchor_start",
            (day.isoformat(),),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def list_all(self) -> List[Tuple[ExecutionChain, int]]:
        """Every stored chain with its version, by anchor start."""
        rows = self._conn.execute(
            "SELECT chain_json, version FROM chains ORDER BY anchor_start"
        ).fetchall()
        return [(self._deserialize(r), r["version"]) for r in rows]

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM chains").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

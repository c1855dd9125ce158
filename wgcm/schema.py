"""
Database Schema - interfaces, directional peers, allowed IPs

Three tables:
- interfaces: one row per WireGuard endpoint identity
- peers: one row per DIRECTION of a peering (A->B and B->A are two rows)
- allowed_ips: CIDR ranges attached to a single directional peer row

Schema changes are applied as numbered migrations; PRAGMA user_version
holds how many have run.
"""

import sqlite3
import ipaddress
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import List

from wgcm.errors import SchemaTooNew

logger = logging.getLogger(__name__)


# Each migration is applied inside its own transaction. Never edit an
# entry once released; append a new one instead.
MIGRATIONS: List[List[str]] = [
    # 1: initial layout
    [
        """
        CREATE TABLE interfaces (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            comment TEXT,
            privkey TEXT NOT NULL UNIQUE,
            hostname TEXT,
            port INTEGER,
            address TEXT NOT NULL UNIQUE,
            prefix INTEGER,
            dns TEXT
        )
        """,
        """
        CREATE TABLE peers (
            id INTEGER PRIMARY KEY,
            interface1 INTEGER NOT NULL,
            interface2 INTEGER NOT NULL,
            psk TEXT,
            FOREIGN KEY (interface1) REFERENCES interfaces (id) ON DELETE CASCADE,
            FOREIGN KEY (interface2) REFERENCES interfaces (id) ON DELETE CASCADE,
            UNIQUE (interface1, interface2)
        )
        """,
        """
        CREATE TABLE allowed_ips (
            id INTEGER PRIMARY KEY,
            peer INTEGER,
            address TEXT,
            prefix INTEGER,
            FOREIGN KEY (peer) REFERENCES peers (id) ON DELETE CASCADE,
            UNIQUE (peer, address, prefix)
        )
        """,
    ],
    # 2: remaining wg-quick fields
    [
        "ALTER TABLE interfaces ADD COLUMN routing_table TEXT",
        "ALTER TABLE interfaces ADD COLUMN mtu INTEGER",
        "ALTER TABLE interfaces ADD COLUMN pre_up TEXT",
        "ALTER TABLE interfaces ADD COLUMN post_up TEXT",
        "ALTER TABLE interfaces ADD COLUMN pre_down TEXT",
        "ALTER TABLE interfaces ADD COLUMN post_down TEXT",
        "ALTER TABLE peers ADD COLUMN keep_alive INTEGER",
    ],
]

SCHEMA_VERSION = len(MIGRATIONS)


def aton(address: str) -> bytes:
    """
    Sort key for an IP literal: a family byte, then 16 big-endian bytes.

    The family byte (4 or 6) puts every IPv4 address before every IPv6
    address, including ::/96. Registered as the SQL function aton().
    """
    ip = ipaddress.ip_address(address)
    return bytes([ip.version]) + ip.packed.rjust(16, b'\x00')


class TopologyDB:
    """SQLite database holding the WireGuard topology"""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path) if isinstance(db_path, str) else db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._migrate()

    @contextmanager
    def _connection(self):
        """Context manager for database connections"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.create_function("aton", 1, aton, deterministic=True)

        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            raise e
        finally:
            conn.close()

    def get_version(self) -> int:
        """Return the schema version recorded in the database file"""
        with self._connection() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]

    def _migrate(self):
        """Apply pending migrations; refuse databases from the future"""
        version = self.get_version()

        if version > SCHEMA_VERSION:
            raise SchemaTooNew(version, SCHEMA_VERSION)

        for number in range(version + 1, SCHEMA_VERSION + 1):
            with self._connection() as conn:
                # DDL does not open an implicit transaction
                conn.execute("BEGIN")
                for statement in MIGRATIONS[number - 1]:
                    conn.execute(statement)
                conn.execute(f"PRAGMA user_version = {number}")

            logger.info(f"Applied schema migration {number} to {self.db_path}")

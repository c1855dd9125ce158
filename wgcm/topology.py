"""
Topology Operations - interfaces, peerings and allowed IPs

A peering between A and B is stored as TWO directional rows in `peers`:
A->B ("A accepts B with these allowed IPs") and B->A. Operations that
conceptually touch "the peering" (peer, unpeer, psk, keepalive) always
write both rows in one transaction. Only allow/unallow and route touch
a single direction.

Allowed IPs store address literals, not interface ids, so changing an
interface's address has to rewrite the rows that pointed at it.
"""

import sqlite3
import ipaddress
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from wgcm.errors import ConstraintFailed, InvalidIP, InvalidValue, NoRecord
from wgcm.keygen import derive_public_key, generate_keypair, verify_preshared_key, verify_private_key
from wgcm.schema import TopologyDB

logger = logging.getLogger(__name__)

INTERFACE_COLUMNS = """
    id, name, comment, privkey, hostname, port, address, prefix, dns,
    routing_table, mtu, pre_up, post_up, pre_down, post_down
"""

ROUTING_TABLE_KEYWORDS = ('off', 'auto')


class Field(Enum):
    """Interface attributes settable with `wgcm set`"""
    NAME = "name"
    COMMENT = "comment"
    PRIVKEY = "privkey"
    HOSTNAME = "hostname"
    PORT = "port"
    ADDRESS = "address"
    DNS = "dns"
    TABLE = "table"
    MTU = "mtu"
    PRE_UP = "pre_up"
    POST_UP = "post_up"
    PRE_DOWN = "pre_down"
    POST_DOWN = "post_down"

    @property
    def column(self) -> str:
        if self is Field.TABLE:
            return 'routing_table'
        return self.value


REQUIRED_FIELDS = {Field.NAME, Field.PRIVKEY, Field.ADDRESS}


@dataclass
class Interface:
    """One WireGuard endpoint identity"""
    id: int
    name: str
    comment: Optional[str]
    private_key: str
    hostname: Optional[str]
    port: Optional[int]
    address: str
    prefix: int
    dns: Optional[str] = None
    routing_table: Optional[str] = None
    mtu: Optional[int] = None
    pre_up: Optional[str] = None
    post_up: Optional[str] = None
    pre_down: Optional[str] = None
    post_down: Optional[str] = None

    @property
    def public_key(self) -> str:
        return derive_public_key(self.private_key)

    @property
    def cidr(self) -> str:
        return f"{self.address}/{self.prefix}"


@dataclass
class AllowedIP:
    address: str
    prefix: int

    def __str__(self) -> str:
        return f"{self.address}/{self.prefix}"


@dataclass
class PeerEdge:
    """
    One directional peer row, joined with the interface it points at.

    `name`, `private_key`, `address`, `hostname` and `port` describe
    interface2; the public key is derived from `private_key` when needed.
    """
    id: int
    interface1: int
    interface2: int
    name: str
    comment: Optional[str]
    private_key: str
    address: str
    hostname: Optional[str]
    port: Optional[int]
    psk: Optional[str]
    keep_alive: Optional[int]
    allowed_ips: List[AllowedIP] = field(default_factory=list)

    @property
    def public_key(self) -> str:
        return derive_public_key(self.private_key)


@dataclass
class InterfaceSummary:
    interface: Interface
    peer_count: int


@dataclass
class InterfaceDetail:
    """An interface and its outbound peer edges, ready for rendering"""
    interface: Interface
    peers: List[PeerEdge] = field(default_factory=list)


# =============================================================================
# ADDRESS HELPERS
# =============================================================================

def check_name(name: str) -> str:
    """
    Validate an interface name.

    Names double as file names (<name>.conf) when dumping, so path
    separators and a leading '.' are refused.
    """
    if not name or not name.strip():
        raise InvalidValue("interface name cannot be empty")
    if '/' in name or '\\' in name or '\0' in name or name.startswith('.'):
        raise InvalidValue(
            f"interface name {name!r} cannot contain path separators or start with '.'"
        )
    return name


def normalize_address(address: str) -> str:
    """Parse an IPv4/IPv6 literal and return its canonical text form"""
    try:
        return str(ipaddress.ip_address(address.strip()))
    except ValueError:
        raise InvalidIP(f"invalid IP address: {address!r}")


def host_prefix(address: str) -> int:
    """Prefix that covers exactly one address: 32 or 128"""
    return ipaddress.ip_address(address).max_prefixlen


def check_prefix(address: str, prefix: int) -> int:
    """Validate a prefix length against the address family"""
    max_prefix = host_prefix(address)
    if not 0 <= prefix <= max_prefix:
        raise InvalidIP(f"prefix /{prefix} out of range for {address} (0-{max_prefix})")
    return prefix


def parse_cidr(text: str) -> Tuple[str, Optional[int]]:
    """
    Split "ip[/prefix]" into a canonical address and a validated prefix.

    The prefix is None when the text has none.
    """
    address, slash, prefix_text = text.strip().partition('/')
    address = normalize_address(address)

    if not slash:
        return address, None

    try:
        prefix = int(prefix_text)
    except ValueError:
        raise InvalidIP(f"invalid prefix: {prefix_text!r}")

    return address, check_prefix(address, prefix)


def parse_routing_table(value: str) -> Union[str, int]:
    """
    Interpret the routing_table column.

    Returns "off" or "auto" for the keywords, otherwise the table id.
    """
    text = value.strip().lower()
    if text in ROUTING_TABLE_KEYWORDS:
        return text
    if text.isdigit():
        return int(text)
    raise InvalidValue(f"routing table must be 'off', 'auto' or a table number, got {value!r}")


def _parse_int(field_name: str, value: Union[str, int], low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidValue(f"{field_name} must be an integer, got {value!r}")
    if not low <= number <= high:
        raise InvalidValue(f"{field_name} must be between {low} and {high}, got {number}")
    return number


def _interface_from_row(row: sqlite3.Row) -> Interface:
    return Interface(
        id=row['id'],
        name=row['name'],
        comment=row['comment'],
        private_key=row['privkey'],
        hostname=row['hostname'],
        port=row['port'],
        address=row['address'],
        prefix=row['prefix'],
        dns=row['dns'],
        routing_table=row['routing_table'],
        mtu=row['mtu'],
        pre_up=row['pre_up'],
        post_up=row['post_up'],
        pre_down=row['pre_down'],
        post_down=row['post_down'],
    )


# =============================================================================
# OPERATIONS
# =============================================================================

class TopologyOps:
    """Graph-consistent operations over the topology database"""

    def __init__(self, db: TopologyDB):
        self.db = db

    # ----- interfaces -----

    def add_interface(self, name: str, address: str, prefix: int,
                      private_key: Optional[str] = None) -> int:
        """
        Add an interface, generating a keypair unless one is supplied.

        Returns:
            ID of the new interface
        """
        check_name(name)
        address = normalize_address(address)
        check_prefix(address, prefix)

        if private_key is None:
            private_key, _ = generate_keypair()
        else:
            private_key = verify_private_key(private_key)

        try:
            with self.db._connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO interfaces (name, address, prefix, privkey)
                    VALUES (?, ?, ?, ?)
                """, (name, address, prefix, private_key))
                interface_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConstraintFailed(str(e))

        logger.info(f"Added interface {name} ({address}/{prefix}) as id {interface_id}")
        return interface_id

    def remove_interface(self, interface_id: int):
        """Delete an interface; its edges and their allowed IPs cascade"""
        with self.db._connection() as conn:
            cursor = conn.execute("DELETE FROM interfaces WHERE id = ?", (interface_id,))
            if cursor.rowcount == 0:
                raise NoRecord(f"no interface with id {interface_id}")

        logger.info(f"Removed interface {interface_id}")

    def interface_id_from_name(self, name: str) -> int:
        with self.db._connection() as conn:
            row = conn.execute("SELECT id FROM interfaces WHERE name = ?", (name,)).fetchone()

        if not row:
            raise NoRecord(f"no interface named {name!r}")
        return row['id']

    def get_interface(self, interface_id: int) -> Interface:
        with self.db._connection() as conn:
            return self._get_interface(conn, interface_id)

    def _get_interface(self, conn: sqlite3.Connection, interface_id: int) -> Interface:
        row = conn.execute(
            f"SELECT {INTERFACE_COLUMNS} FROM interfaces WHERE id = ?", (interface_id,)
        ).fetchone()

        if not row:
            raise NoRecord(f"no interface with id {interface_id}")
        return _interface_from_row(row)

    # ----- peerings -----

    def add_peer(self, interface_id1: int, interface_id2: int):
        """
        Peer two interfaces symmetrically.

        Each direction allows exactly the other side's own address.
        """
        try:
            with self.db._connection() as conn:
                first = self._get_interface(conn, interface_id1)
                second = self._get_interface(conn, interface_id2)

                forward = self._insert_edge(conn, first.id, second.id)
                backward = self._insert_edge(conn, second.id, first.id)

                self._insert_allowed_ip(conn, forward, second.address, host_prefix(second.address))
                self._insert_allowed_ip(conn, backward, first.address, host_prefix(first.address))
        except sqlite3.IntegrityError as e:
            raise ConstraintFailed(str(e))

        logger.info(f"Peered {first.name} <-> {second.name}")

    def add_router(self, router_id: int, client_id: int):
        """
        Route a client through a router.

        router->client allows the client's single address; client->router
        allows the router's whole subnet (its address/prefix).
        """
        try:
            with self.db._connection() as conn:
                router = self._get_interface(conn, router_id)
                client = self._get_interface(conn, client_id)

                router_to_client = self._insert_edge(conn, router.id, client.id)
                client_to_router = self._insert_edge(conn, client.id, router.id)

                self._insert_allowed_ip(conn, router_to_client, client.address, host_prefix(client.address))
                self._insert_allowed_ip(conn, client_to_router, router.address, router.prefix)
        except sqlite3.IntegrityError as e:
            raise ConstraintFailed(str(e))

        logger.info(f"Routed {client.name} via {router.name} ({router.cidr})")

    def unpeer(self, interface_id1: int, interface_id2: int) -> int:
        """
        Delete both directions of a peering.

        Returns:
            Number of edge rows removed (0 when not peered)
        """
        with self.db._connection() as conn:
            cursor = conn.execute("""
                DELETE FROM peers
                WHERE (interface1 = ? AND interface2 = ?)
                   OR (interface1 = ? AND interface2 = ?)
            """, (interface_id1, interface_id2, interface_id2, interface_id1))
            removed = cursor.rowcount

        logger.info(f"Unpeered {interface_id1} <-> {interface_id2} ({removed} edges)")
        return removed

    def _insert_edge(self, conn: sqlite3.Connection, interface_id1: int, interface_id2: int) -> int:
        cursor = conn.execute(
            "INSERT INTO peers (interface1, interface2) VALUES (?, ?)",
            (interface_id1, interface_id2)
        )
        return cursor.lastrowid

    def _edge_id(self, conn: sqlite3.Connection, interface_id1: int, interface_id2: int) -> int:
        row = conn.execute(
            "SELECT id FROM peers WHERE interface1 = ? AND interface2 = ?",
            (interface_id1, interface_id2)
        ).fetchone()

        if not row:
            raise NoRecord(f"interface {interface_id1} has no peer edge to {interface_id2}")
        return row['id']

    # ----- allowed IPs -----

    def _insert_allowed_ip(self, conn: sqlite3.Connection, edge_id: int, address: str, prefix: int) -> int:
        cursor = conn.execute(
            "INSERT INTO allowed_ips (peer, address, prefix) VALUES (?, ?, ?)",
            (edge_id, address, prefix)
        )
        return cursor.lastrowid

    def add_allowed_ip(self, interface_id1: int, interface_id2: int, address: str, prefix: int) -> int:
        """Allow a range on the edge interface1 -> interface2 only"""
        address = normalize_address(address)
        check_prefix(address, prefix)

        try:
            with self.db._connection() as conn:
                edge_id = self._edge_id(conn, interface_id1, interface_id2)
                allowed_id = self._insert_allowed_ip(conn, edge_id, address, prefix)
        except sqlite3.IntegrityError as e:
            raise ConstraintFailed(str(e))

        logger.info(f"Allowed {address}/{prefix} on {interface_id1} -> {interface_id2}")
        return allowed_id

    def remove_allowed_ip(self, interface_id1: int, interface_id2: int, address: str, prefix: int) -> bool:
        """
        Remove a range from the edge interface1 -> interface2.

        Returns:
            True if a row was removed
        """
        address = normalize_address(address)
        check_prefix(address, prefix)

        with self.db._connection() as conn:
            edge_id = self._edge_id(conn, interface_id1, interface_id2)
            cursor = conn.execute(
                "DELETE FROM allowed_ips WHERE peer = ? AND address = ? AND prefix = ?",
                (edge_id, address, prefix)
            )
            removed = cursor.rowcount > 0

        if removed:
            logger.info(f"Unallowed {address}/{prefix} on {interface_id1} -> {interface_id2}")
        return removed

    # ----- symmetric edge attributes -----

    def _update_both_edges(self, column: str, value, interface_id1: int, interface_id2: int):
        with self.db._connection() as conn:
            cursor = conn.execute(f"""
                UPDATE peers SET {column} = ?
                WHERE (interface1 = ? AND interface2 = ?)
                   OR (interface1 = ? AND interface2 = ?)
            """, (value, interface_id1, interface_id2, interface_id2, interface_id1))

            if cursor.rowcount == 0:
                raise NoRecord(f"interfaces {interface_id1} and {interface_id2} are not peered")

    def set_preshared_key(self, interface_id1: int, interface_id2: int, key: Optional[str] = None):
        """Set (or clear, with None) the same PSK on both directions"""
        if key is not None:
            key = verify_preshared_key(key)

        self._update_both_edges('psk', key, interface_id1, interface_id2)

        action = "Set" if key else "Cleared"
        logger.info(f"{action} preshared key for {interface_id1} <-> {interface_id2}")

    def set_keep_alive(self, interface_id1: int, interface_id2: int, seconds: int):
        """Set PersistentKeepalive on both directions; 0 clears it"""
        seconds = _parse_int('keepalive', seconds, 0, 65535)
        self._update_both_edges('keep_alive', seconds or None, interface_id1, interface_id2)

        logger.info(f"Keepalive for {interface_id1} <-> {interface_id2} set to {seconds or 'off'}")

    # ----- field updates -----

    def set_field(self, interface_id: int, field_name: Union[Field, str], value: Optional[str] = None):
        """
        Set one interface attribute; None (or empty) clears optional fields.

        Address changes go through _set_address so allowed IPs follow.
        """
        try:
            target = Field(field_name)
        except ValueError:
            raise InvalidValue(f"unknown field {field_name!r}")

        if isinstance(value, str) and not value.strip():
            value = None

        if value is None and target in REQUIRED_FIELDS:
            raise InvalidValue(f"{target.value} cannot be cleared")

        if target is Field.ADDRESS:
            self._set_address(interface_id, value)
            return

        stored = self._validate_field(target, value)

        try:
            with self.db._connection() as conn:
                cursor = conn.execute(
                    f"UPDATE interfaces SET {target.column} = ? WHERE id = ?",
                    (stored, interface_id)
                )
                if cursor.rowcount == 0:
                    raise NoRecord(f"no interface with id {interface_id}")
        except sqlite3.IntegrityError as e:
            raise ConstraintFailed(str(e))

        logger.info(f"Set {target.value} on interface {interface_id}")

    def _validate_field(self, target: Field, value: Optional[str]):
        if value is None:
            return None
        if target is Field.NAME:
            return check_name(str(value).strip())
        if target is Field.PRIVKEY:
            return verify_private_key(value)
        if target is Field.PORT:
            return _parse_int('port', value, 1, 65535)
        if target is Field.MTU:
            return _parse_int('mtu', value, 1, 65535)
        if target is Field.TABLE:
            # Stored as text either way; renderers tell the cases apart
            return str(parse_routing_table(str(value)))
        return str(value).strip()

    def _set_address(self, interface_id: int, value: str):
        """
        Change an interface's address and repair allowed IPs that held it.

        Rows that held the old address as a single host are rewritten to
        the new single host. Rows on edges pointing at this interface that
        held its old address/prefix (route subnets) follow the new
        address/prefix.
        """
        address, prefix = parse_cidr(value)

        try:
            with self.db._connection() as conn:
                current = self._get_interface(conn, interface_id)
                if prefix is None:
                    prefix = check_prefix(address, current.prefix)

                conn.execute(
                    "UPDATE interfaces SET address = ?, prefix = ? WHERE id = ?",
                    (address, prefix, interface_id)
                )

                conn.execute("""
                    UPDATE allowed_ips SET address = ?, prefix = ?
                    WHERE address = ? AND prefix = ?
                """, (address, host_prefix(address), current.address, host_prefix(current.address)))

                if current.prefix != host_prefix(current.address):
                    conn.execute("""
                        UPDATE allowed_ips SET address = ?, prefix = ?
                        WHERE address = ? AND prefix = ?
                          AND peer IN (SELECT id FROM peers WHERE interface2 = ?)
                    """, (address, prefix, current.address, current.prefix, interface_id))
        except sqlite3.IntegrityError as e:
            raise ConstraintFailed(str(e))

        logger.info(f"Moved interface {interface_id} from {current.cidr} to {address}/{prefix}")

    # ----- queries -----

    def list_interfaces(self) -> List[InterfaceSummary]:
        """All interfaces with outbound peer counts, in numeric IP order"""
        with self.db._connection() as conn:
            rows = conn.execute(f"""
                SELECT {INTERFACE_COLUMNS},
                       (SELECT COUNT(*) FROM peers p WHERE p.interface1 = interfaces.id) AS peer_count
                FROM interfaces
                ORDER BY aton(address)
            """).fetchall()

        return [InterfaceSummary(interface=_interface_from_row(row), peer_count=row['peer_count'])
                for row in rows]

    def interface_names(self) -> List[str]:
        with self.db._connection() as conn:
            rows = conn.execute("SELECT name FROM interfaces ORDER BY name").fetchall()
        return [row['name'] for row in rows]

    def get_interface_detail(self, interface_id: int) -> InterfaceDetail:
        """An interface plus its outbound edges and their allowed IPs"""
        with self.db._connection() as conn:
            interface = self._get_interface(conn, interface_id)
            rows = conn.execute("""
                SELECT p.id, p.interface1, p.interface2, p.psk, p.keep_alive,
                       i.name, i.comment, i.privkey, i.address, i.hostname, i.port
                FROM peers p
                JOIN interfaces i ON i.id = p.interface2
                WHERE p.interface1 = ?
                ORDER BY aton(i.address)
            """, (interface_id,)).fetchall()

            peers = [self._edge_from_row(conn, row) for row in rows]

        return InterfaceDetail(interface=interface, peers=peers)

    def get_peer_edge(self, interface_id1: int, interface_id2: int) -> PeerEdge:
        """The single directional edge interface1 -> interface2"""
        with self.db._connection() as conn:
            row = conn.execute("""
                SELECT p.id, p.interface1, p.interface2, p.psk, p.keep_alive,
                       i.name, i.comment, i.privkey, i.address, i.hostname, i.port
                FROM peers p
                JOIN interfaces i ON i.id = p.interface2
                WHERE p.interface1 = ? AND p.interface2 = ?
            """, (interface_id1, interface_id2)).fetchone()

            if not row:
                raise NoRecord(f"interface {interface_id1} has no peer edge to {interface_id2}")
            return self._edge_from_row(conn, row)

    def _edge_from_row(self, conn: sqlite3.Connection, row: sqlite3.Row) -> PeerEdge:
        allowed = conn.execute("""
            SELECT address, prefix FROM allowed_ips
            WHERE peer = ?
            ORDER BY aton(address), prefix
        """, (row['id'],)).fetchall()

        return PeerEdge(
            id=row['id'],
            interface1=row['interface1'],
            interface2=row['interface2'],
            name=row['name'],
            comment=row['comment'],
            private_key=row['privkey'],
            address=row['address'],
            hostname=row['hostname'],
            port=row['port'],
            psk=row['psk'],
            keep_alive=row['keep_alive'],
            allowed_ips=[AllowedIP(address=a['address'], prefix=a['prefix']) for a in allowed],
        )

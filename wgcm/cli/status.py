"""
Topology Status View

Prints query results either as Rich tables or as JSON, depending on
the output mode (--json, $WGCM_OUTPUT, or the settings file).
"""

import json
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich import box

from wgcm.topology import Interface, InterfaceDetail, InterfaceSummary, PeerEdge


def interface_to_dict(interface: Interface) -> dict:
    """Public view of an interface; the private key is never printed here"""
    return {
        'id': interface.id,
        'name': interface.name,
        'comment': interface.comment,
        'public_key': interface.public_key,
        'hostname': interface.hostname,
        'port': interface.port,
        'address': interface.address,
        'prefix': interface.prefix,
        'dns': interface.dns,
        'table': interface.routing_table,
        'mtu': interface.mtu,
        'pre_up': interface.pre_up,
        'post_up': interface.post_up,
        'pre_down': interface.pre_down,
        'post_down': interface.post_down,
    }


def peer_to_dict(peer: PeerEdge) -> dict:
    return {
        'name': peer.name,
        'comment': peer.comment,
        'public_key': peer.public_key,
        'address': peer.address,
        'endpoint': f"{peer.hostname}:{peer.port}" if peer.hostname and peer.port else None,
        'preshared_key': bool(peer.psk),
        'keep_alive': peer.keep_alive,
        'allowed_ips': [str(ip) for ip in peer.allowed_ips],
    }


def detail_to_dict(detail: InterfaceDetail) -> dict:
    data = interface_to_dict(detail.interface)
    data['peers'] = [peer_to_dict(peer) for peer in detail.peers]
    return data


def _text(value) -> str:
    if value is None:
        return "-"
    return escape(str(value))


def show_interface_list(summaries: List[InterfaceSummary], mode: str,
                        console: Optional[Console] = None):
    """Display all interfaces with their peer counts"""
    if mode == 'json':
        data = []
        for summary in summaries:
            entry = interface_to_dict(summary.interface)
            entry['peers'] = summary.peer_count
            data.append(entry)
        print(json.dumps(data, indent=2))
        return

    console = console or Console()

    if not summaries:
        console.print("No interfaces defined")
        return

    table = Table(title="Interfaces", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Address", style="green")
    table.add_column("Endpoint", style="dim")
    table.add_column("Peers", justify="right")
    table.add_column("Public Key", style="dim")
    table.add_column("Comment")

    for summary in summaries:
        interface = summary.interface
        endpoint = None
        if interface.hostname:
            endpoint = f"{interface.hostname}:{interface.port}" if interface.port else interface.hostname
        table.add_row(
            _text(interface.name),
            _text(interface.cidr),
            _text(endpoint),
            str(summary.peer_count),
            interface.public_key,
            _text(interface.comment),
        )

    console.print(table)


def show_interface_detail(detail: InterfaceDetail, mode: str,
                          console: Optional[Console] = None):
    """Display one interface, its settings and its peers"""
    if mode == 'json':
        print(json.dumps(detail_to_dict(detail), indent=2))
        return

    console = console or Console()
    interface = detail.interface

    table = Table(title=_text(interface.name), show_header=False, box=box.SIMPLE)
    table.add_column("Property", style="bold")
    table.add_column("Value")

    for key, value in interface_to_dict(interface).items():
        if key in ('id', 'name') or value is None:
            continue
        table.add_row(key, _text(value))

    console.print(table)

    if not detail.peers:
        console.print("No peers")
        return

    peers = Table(title="Peers", box=box.ROUNDED)
    peers.add_column("Name", style="cyan")
    peers.add_column("Allowed IPs", style="green")
    peers.add_column("Endpoint", style="dim")
    peers.add_column("PSK", justify="center")
    peers.add_column("Keepalive", justify="right")

    for peer in detail.peers:
        data = peer_to_dict(peer)
        peers.add_row(
            _text(peer.name),
            _text(', '.join(data['allowed_ips'])),
            _text(data['endpoint']),
            "yes" if peer.psk else "no",
            _text(peer.keep_alive),
        )

    console.print(peers)

"""
Config Generator - Database -> WireGuard Configs

Renders one interface and its outbound peer edges as:
- wg-quick configs ([Interface] / [Peer] stanzas)
- OpenBSD hostname.if files (ifconfig directives, one line per peer)

Both renderers are pure: same InterfaceDetail in, same text out.
Public keys are derived from the stored private keys on every render.
"""

import logging
from pathlib import Path
from typing import List, Optional

from wgcm.errors import InvalidValue
from wgcm.keygen import derive_public_key
from wgcm.topology import InterfaceDetail, PeerEdge, TopologyOps, parse_routing_table

logger = logging.getLogger(__name__)


def _peer_label(peer: PeerEdge) -> str:
    if peer.comment:
        return f"{peer.name}: {peer.comment}"
    return peer.name


def _endpoint_host(hostname: str) -> str:
    # Bare IPv6 literals need brackets before the port
    if ':' in hostname and not hostname.startswith('['):
        return f"[{hostname}]"
    return hostname


def generate_wg_quick(detail: InterfaceDetail) -> str:
    """Generate a wg-quick config for one interface"""
    interface = detail.interface
    lines = []

    # [Interface]
    lines.append("[Interface]")
    if interface.comment:
        lines.append(f"# {interface.comment}")
    lines.append(f"Address = {interface.address}/{interface.prefix}")
    lines.append(f"PrivateKey = {interface.private_key}")

    if interface.dns:
        lines.append(f"DNS = {interface.dns}")
    if interface.port:
        lines.append(f"ListenPort = {interface.port}")
    if interface.routing_table:
        lines.append(f"Table = {parse_routing_table(interface.routing_table)}")
    if interface.mtu:
        lines.append(f"MTU = {interface.mtu}")
    if interface.pre_up:
        lines.append(f"PreUp = {interface.pre_up}")
    if interface.post_up:
        lines.append(f"PostUp = {interface.post_up}")
    if interface.pre_down:
        lines.append(f"PreDown = {interface.pre_down}")
    if interface.post_down:
        lines.append(f"PostDown = {interface.post_down}")

    # [Peer] - one per outbound edge
    for peer in detail.peers:
        lines.append("")
        lines.append("[Peer]")
        lines.append(f"# {_peer_label(peer)}")
        lines.append(f"PublicKey = {derive_public_key(peer.private_key)}")

        if peer.psk:
            lines.append(f"PresharedKey = {peer.psk}")

        if peer.hostname and peer.port:
            lines.append(f"Endpoint = {_endpoint_host(peer.hostname)}:{peer.port}")

        if peer.keep_alive:
            lines.append(f"PersistentKeepalive = {peer.keep_alive}")

        lines.append(f"AllowedIPs = {', '.join(str(ip) for ip in peer.allowed_ips)}")

    return '\n'.join(lines) + '\n'


def generate_openbsd(detail: InterfaceDetail) -> str:
    """
    Generate an OpenBSD hostname.if for one interface.

    hostname.if has no down hooks: pre_down/post_down are kept as
    comments so the information is not lost, but they never run.
    """
    interface = detail.interface
    lines = []

    if interface.comment:
        lines.append(f"# {interface.comment}")

    if interface.pre_up:
        lines.append(f"!{interface.pre_up}")

    if ':' in interface.address:
        lines.append(f"inet6 {interface.address}/{interface.prefix}")
    else:
        lines.append(f"inet {interface.address}/{interface.prefix}")

    lines.append(f"wgkey {interface.private_key}")

    if interface.port:
        lines.append(f"wgport {interface.port}")

    if interface.routing_table:
        table = parse_routing_table(interface.routing_table)
        if isinstance(table, int):
            lines.append(f"wgrtable {table}")
        else:
            lines.append(f"# table {table}: no hostname.if equivalent")

    if interface.mtu:
        lines.append(f"mtu {interface.mtu}")

    for peer in detail.peers:
        parts = [f"wgpeer {derive_public_key(peer.private_key)}"]
        parts.extend(f"wgaip {ip}" for ip in peer.allowed_ips)

        if peer.psk:
            parts.append(f"wgpsk {peer.psk}")

        if peer.hostname and peer.port:
            parts.append(f"wgendpoint {peer.hostname} {peer.port}")

        if peer.keep_alive:
            parts.append(f"wgpka {peer.keep_alive}")

        parts.append(f"# {_peer_label(peer)}")
        lines.append(' '.join(parts))

    lines.append("up")

    if interface.post_up:
        lines.append(f"!{interface.post_up}")
    if interface.pre_down:
        lines.append(f"# pre_down: {interface.pre_down}")
    if interface.post_down:
        lines.append(f"# post_down: {interface.post_down}")

    return '\n'.join(lines) + '\n'


def dump_configs(ops: TopologyOps, output_dir: Optional[Path]) -> List[str]:
    """
    Render the wg-quick config of every interface.

    With an output directory, writes <name>.conf files (mode 600) and
    returns their paths. Without one, returns the configs as text
    blocks, each headed by a "### <name>.conf" marker line.
    """
    results = []
    summaries = ops.list_interfaces()

    if output_dir is not None:
        for summary in summaries:
            name = summary.interface.name
            if (output_dir / f"{name}.conf").parent.resolve() != output_dir.resolve():
                raise InvalidValue(f"interface name {name!r} is not a plain file name")
        output_dir.mkdir(exist_ok=True, parents=True)

    for summary in summaries:
        interface = summary.interface
        config = generate_wg_quick(ops.get_interface_detail(interface.id))

        if output_dir is None:
            results.append(f"### {interface.name}.conf\n{config}")
            continue

        config_file = output_dir / f"{interface.name}.conf"
        config_file.write_text(config)
        config_file.chmod(0o600)
        logger.info(f"Wrote {config_file}")
        results.append(str(config_file))

    return results

#!/usr/bin/env python3
"""
wgcm - WireGuard configuration manager

Command line front end: resolves settings, opens the topology database
and dispatches to one cmd_* handler per subcommand.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

from rich.console import Console
from rich.markup import escape

from wgcm import VERSION
from wgcm.errors import ConstraintFailed, SchemaTooNew, WgcmError
from wgcm.keygen import generate_preshared_key
from wgcm.schema import TopologyDB
from wgcm.settings import load_config, output_mode, resolve_config_path, resolve_db_path, setup_logging
from wgcm.topology import Field, TopologyOps, host_prefix, parse_cidr
from wgcm.cli.completion import completion_script
from wgcm.cli.config_generator import dump_configs, generate_openbsd, generate_wg_quick
from wgcm.cli.status import show_interface_detail, show_interface_list

logger = logging.getLogger(__name__)


def parse_ip_arg(text: str) -> Tuple[str, int]:
    """ip[/prefix] -> (address, prefix); no prefix means a single host"""
    address, prefix = parse_cidr(text)
    if prefix is None:
        prefix = host_prefix(address)
    return address, prefix


def report(mode: str, message: str, **data):
    """Confirm a change: a checkmark line, or a JSON object"""
    if mode == 'json':
        print(json.dumps({'status': 'ok', **data}, indent=2))
    else:
        Console().print(f"[green]✓[/green] {escape(message)}", soft_wrap=True)


def write_config(text: str, output: Optional[str], mode: str):
    """Print a rendered config, or write it (mode 600) to a file"""
    if not output:
        sys.stdout.write(text)
        return

    output_path = Path(output).expanduser()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(text)
    output_path.chmod(0o600)
    logger.info(f"Wrote {output_path}")
    report(mode, f"Wrote {output_path}", path=str(output_path))


def _pair(ops: TopologyOps, args) -> Tuple[int, int]:
    return ops.interface_id_from_name(args.name1), ops.interface_id_from_name(args.name2)


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_list(args, ops: TopologyOps, mode: str):
    """List all interfaces, or show one in detail"""
    if args.name:
        detail = ops.get_interface_detail(ops.interface_id_from_name(args.name))
        show_interface_detail(detail, mode)
    else:
        show_interface_list(ops.list_interfaces(), mode)


def cmd_names(args, ops: TopologyOps, mode: str):
    """Interface names, one per line (used by completion)"""
    names = ops.interface_names()
    if mode == 'json':
        print(json.dumps(names))
        return
    for name in names:
        print(name)


def cmd_add(args, ops: TopologyOps, mode: str):
    address, prefix = parse_ip_arg(args.ip)

    try:
        interface_id = ops.add_interface(args.name, address, prefix, private_key=args.privkey)
    except ConstraintFailed:
        raise ConstraintFailed(
            f"new interface {args.name!r} ({address}/{prefix}) conflicts with an existing one"
        ) from None

    interface = ops.get_interface(interface_id)
    report(mode, f"Added {interface.name} ({interface.cidr}), public key {interface.public_key}",
           id=interface_id, name=interface.name, address=interface.cidr,
           public_key=interface.public_key)


def cmd_peer(args, ops: TopologyOps, mode: str):
    id1, id2 = _pair(ops, args)
    if id1 == id2:
        raise WgcmError(f"cannot peer {args.name1} with itself")

    try:
        ops.add_peer(id1, id2)
    except ConstraintFailed:
        raise ConstraintFailed(f"{args.name1} and {args.name2} are already peered") from None

    report(mode, f"Peered {args.name1} <-> {args.name2}", peered=[args.name1, args.name2])


def cmd_unpeer(args, ops: TopologyOps, mode: str):
    id1, id2 = _pair(ops, args)
    removed = ops.unpeer(id1, id2)

    if removed:
        report(mode, f"Unpeered {args.name1} <-> {args.name2}", unpeered=[args.name1, args.name2])
    else:
        report(mode, f"{args.name1} and {args.name2} were not peered", unpeered=[])


def cmd_route(args, ops: TopologyOps, mode: str):
    client_id = ops.interface_id_from_name(args.name)
    router_id = ops.interface_id_from_name(args.router)
    if client_id == router_id:
        raise WgcmError(f"cannot route {args.name} through itself")

    try:
        ops.add_router(router_id, client_id)
    except ConstraintFailed:
        raise ConstraintFailed(f"{args.name} and {args.router} are already peered") from None

    report(mode, f"Routed {args.name} via {args.router}", client=args.name, router=args.router)


def cmd_allow(args, ops: TopologyOps, mode: str):
    id1 = ops.interface_id_from_name(args.name)
    id2 = ops.interface_id_from_name(args.peer)
    address, prefix = parse_ip_arg(args.ip)

    try:
        ops.add_allowed_ip(id1, id2, address, prefix)
    except ConstraintFailed:
        raise ConstraintFailed(
            f"IP range {address}/{prefix} already allowed on {args.name} -> {args.peer}"
        ) from None

    report(mode, f"Allowed {address}/{prefix} on {args.name} -> {args.peer}",
           allowed=f"{address}/{prefix}")


def cmd_unallow(args, ops: TopologyOps, mode: str):
    id1 = ops.interface_id_from_name(args.name)
    id2 = ops.interface_id_from_name(args.peer)
    address, prefix = parse_ip_arg(args.ip)

    if not ops.remove_allowed_ip(id1, id2, address, prefix):
        raise WgcmError(f"{address}/{prefix} is not allowed on {args.name} -> {args.peer}")

    report(mode, f"Unallowed {address}/{prefix} on {args.name} -> {args.peer}",
           unallowed=f"{address}/{prefix}")


def cmd_remove(args, ops: TopologyOps, mode: str):
    ops.remove_interface(ops.interface_id_from_name(args.name))
    report(mode, f"Removed {args.name}", removed=args.name)


def cmd_export(args, ops: TopologyOps, mode: str):
    """wg-quick config for one interface"""
    detail = ops.get_interface_detail(ops.interface_id_from_name(args.name))
    write_config(generate_wg_quick(detail), args.output, mode)


def cmd_openbsd(args, ops: TopologyOps, mode: str):
    """OpenBSD hostname.if for one interface"""
    detail = ops.get_interface_detail(ops.interface_id_from_name(args.name))
    write_config(generate_openbsd(detail), args.output, mode)


def cmd_genpsk(args, ops: TopologyOps, mode: str):
    id1, id2 = _pair(ops, args)
    ops.set_preshared_key(id1, id2, generate_preshared_key())
    report(mode, f"Generated preshared key for {args.name1} <-> {args.name2}",
           psk=[args.name1, args.name2])


def cmd_setpsk(args, ops: TopologyOps, mode: str):
    id1, id2 = _pair(ops, args)
    ops.set_preshared_key(id1, id2, args.key)
    report(mode, f"Set preshared key for {args.name1} <-> {args.name2}",
           psk=[args.name1, args.name2])


def cmd_clearpsk(args, ops: TopologyOps, mode: str):
    id1, id2 = _pair(ops, args)
    ops.set_preshared_key(id1, id2, None)
    report(mode, f"Cleared preshared key for {args.name1} <-> {args.name2}",
           psk=[args.name1, args.name2])


def cmd_keepalive(args, ops: TopologyOps, mode: str):
    id1, id2 = _pair(ops, args)
    ops.set_keep_alive(id1, id2, args.seconds)
    report(mode, f"Keepalive for {args.name1} <-> {args.name2} set to {args.seconds}",
           keepalive=args.seconds)


def cmd_set(args, ops: TopologyOps, mode: str):
    interface_id = ops.interface_id_from_name(args.name)
    shown = '<hidden>' if args.field == Field.PRIVKEY.value and args.value else args.value

    try:
        ops.set_field(interface_id, args.field, args.value)
    except ConstraintFailed:
        raise ConstraintFailed(
            f"{args.field} {shown!r} conflicts with another interface"
        ) from None

    action = f"Set {args.field} = {shown}" if args.value else f"Cleared {args.field}"
    report(mode, f"{action} on {args.name}", field=args.field, value=shown)


def cmd_dump(args, ops: TopologyOps, mode: str):
    """Every interface's wg-quick config, to a directory or to stdout"""
    if args.directory == '-':
        blocks = dump_configs(ops, None)
        sys.stdout.write('\n'.join(blocks))
        return

    paths = dump_configs(ops, Path(args.directory).expanduser())
    report(mode, f"Wrote {len(paths)} configs to {args.directory}", paths=paths)


COMMANDS = {
    'list': cmd_list,
    'names': cmd_names,
    'add': cmd_add,
    'peer': cmd_peer,
    'unpeer': cmd_unpeer,
    'route': cmd_route,
    'allow': cmd_allow,
    'unallow': cmd_unallow,
    'remove': cmd_remove,
    'export': cmd_export,
    'openbsd': cmd_openbsd,
    'genpsk': cmd_genpsk,
    'setpsk': cmd_setpsk,
    'clearpsk': cmd_clearpsk,
    'keepalive': cmd_keepalive,
    'set': cmd_set,
    'dump': cmd_dump,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='wgcm',
        description='wgcm - WireGuard configuration manager',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  wgcm add hub 10.0.0.1/24                Add an interface (keys generated)
  wgcm add laptop 10.0.0.2                Single host address (/32)
  wgcm route laptop hub                   Route laptop through hub's subnet
  wgcm peer laptop phone                  Peer two interfaces directly
  wgcm genpsk laptop hub                  Add a preshared key to a peering
  wgcm set hub hostname vpn.example.com   Give hub a public endpoint
  wgcm export laptop -o laptop.conf       Write laptop's wg-quick config
  wgcm openbsd hub                        Print hub's hostname.if
  wgcm dump /etc/wireguard                Write every config
  source <(wgcm bash)                     Enable bash completion
        """
    )

    parser.add_argument('--db', help='Database path (default: $WGCM_DB or ~/.config/wgcm/wgcm.db)')
    parser.add_argument(
        '-c', '--config',
        help='Settings file (default: $WGCM_CONFIG or ~/.config/wgcm/config.yaml)'
    )
    parser.add_argument('--json', action='store_true', help='JSON output')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log changes to stderr')
    parser.add_argument('--version', action='version', version=f'%(prog)s {VERSION}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    list_parser = subparsers.add_parser('list', help='List interfaces, or show one')
    list_parser.add_argument('name', nargs='?', help='Interface name')

    subparsers.add_parser('names', help='Print interface names')

    add_parser = subparsers.add_parser('add', help='Add an interface')
    add_parser.add_argument('name', help='Interface name')
    add_parser.add_argument('ip', help='Address, ip[/prefix]')
    add_parser.add_argument('--privkey', help='Use this private key instead of generating one')

    for command, help_text in [
        ('peer', 'Peer two interfaces'),
        ('unpeer', 'Remove a peering'),
        ('genpsk', 'Generate a preshared key for a peering'),
        ('clearpsk', 'Remove the preshared key from a peering'),
    ]:
        pair_parser = subparsers.add_parser(command, help=help_text)
        pair_parser.add_argument('name1', help='Interface name')
        pair_parser.add_argument('name2', help='Interface name')

    route_parser = subparsers.add_parser('route', help="Route an interface through a router's subnet")
    route_parser.add_argument('name', help='Client interface')
    route_parser.add_argument('router', help='Router interface')

    for command, help_text in [
        ('allow', 'Allow an IP range on one direction of a peering'),
        ('unallow', 'Remove an allowed IP range'),
    ]:
        allow_parser = subparsers.add_parser(command, help=help_text)
        allow_parser.add_argument('name', help='Interface whose config lists the range')
        allow_parser.add_argument('peer', help='Peer the range is attached to')
        allow_parser.add_argument('ip', help='Range, ip[/prefix]')

    remove_parser = subparsers.add_parser('remove', help='Remove an interface and its peerings')
    remove_parser.add_argument('name', help='Interface name')

    for command, help_text in [
        ('export', 'Print the wg-quick config of an interface'),
        ('openbsd', 'Print the OpenBSD hostname.if of an interface'),
    ]:
        export_parser = subparsers.add_parser(command, help=help_text)
        export_parser.add_argument('name', help='Interface name')
        export_parser.add_argument('-o', '--output', help='Write to this file (mode 600)')

    setpsk_parser = subparsers.add_parser('setpsk', help='Set the preshared key of a peering')
    setpsk_parser.add_argument('name1', help='Interface name')
    setpsk_parser.add_argument('name2', help='Interface name')
    setpsk_parser.add_argument('key', help='Base64 preshared key')

    keepalive_parser = subparsers.add_parser('keepalive', help='Set PersistentKeepalive of a peering')
    keepalive_parser.add_argument('name1', help='Interface name')
    keepalive_parser.add_argument('name2', help='Interface name')
    keepalive_parser.add_argument('seconds', help='Interval in seconds, 0 turns it off')

    set_parser = subparsers.add_parser('set', help='Set or clear an interface field')
    set_parser.add_argument('name', help='Interface name')
    set_parser.add_argument('field', choices=[f.value for f in Field], help='Field to change')
    set_parser.add_argument('value', nargs='?', help='New value (omit to clear)')

    dump_parser = subparsers.add_parser('dump', help='Write every wg-quick config')
    dump_parser.add_argument('directory', help="Output directory, or '-' for stdout")

    subparsers.add_parser('bash', help='Print the bash completion script')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == 'bash':
        sys.stdout.write(completion_script())
        return 0

    try:
        config = load_config(resolve_config_path(args.config))
        setup_logging(config, verbose=args.verbose)
        mode = output_mode(config, json_flag=args.json)

        db = TopologyDB(resolve_db_path(args.db))
    except SchemaTooNew as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except WgcmError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        COMMANDS[args.command](args, TopologyOps(db), mode)
    except WgcmError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())

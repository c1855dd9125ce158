"""
wgcm - WireGuard configuration manager

Stores interfaces and their peerings in SQLite and renders
wg-quick and OpenBSD hostname.if configs from them.
"""

VERSION = "0.3.0"

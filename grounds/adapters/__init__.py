"""Adapters package - clients for services beside the lab engine.

Collaborators that are not part of the session state machine (VPN
profile issuance, contract scanning over a box's JSON-RPC endpoint)
live here.
"""
from __future__ import annotations

__all__ = [
    "ContractScanner",
    "VpnConfigClient",
    "rpc_url_for",
    "vpn_filename",
]

from grounds.adapters.scanner import ContractScanner, rpc_url_for
from grounds.adapters.vpn import VpnConfigClient, vpn_filename

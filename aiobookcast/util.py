"""Utility functions for aiobookcast."""

from __future__ import annotations

import inspect
import socket
from collections.abc import Awaitable
from ipaddress import ip_address
from typing import TypeVar

T = TypeVar("T")


def get_local_ip(route_target: str = "8.8.8.8") -> str | None:
    """Return the LAN address Cast devices should use to reach the proxy.

    Used for stream URLs when the proxy listens on all interfaces. Returns
    None when there is no route to `route_target`; callers then fall back
    to loopback.
    """
    # A connected UDP socket reports its outbound address without sending
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect((route_target, 80))
            address: str = sock.getsockname()[0]
    except OSError:
        return None
    return address


async def maybe_await(value: T | Awaitable[T]) -> T:
    """Return value, awaiting it first if it is awaitable.

    Lets callbacks be either plain functions or coroutine functions.
    """
    if inspect.isawaitable(value):
        return await value
    return value


def get_first_valid_ip(addresses: list[str]) -> str | None:
    """Get the first usable IP address, skipping link-local and unspecified ones."""
    for addr_str in addresses:
        try:
            addr = ip_address(addr_str)
        except ValueError:
            continue
        if not addr.is_link_local and not addr.is_unspecified:
            return addr_str
    return None

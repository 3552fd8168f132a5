"""Cast device discovery via mDNS."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from aiobookcast.models.cast import DEFAULT_CAST_PORT, CastDevice
from aiobookcast.util import get_first_valid_ip

logger = logging.getLogger(__name__)

CAST_SERVICE_TYPE = "_googlecast._tcp.local."
DEFAULT_CACHE_TTL_MS = 30000
DEFAULT_DISCOVERY_TIMEOUT_MS = 5000
RESOLVE_TIMEOUT_MS = 3000


def _txt_value(info: AsyncServiceInfo, key: str) -> str | None:
    """Read a TXT record value as text."""
    if not info.properties:
        return None
    for k, v in info.properties.items():
        name = k.decode() if isinstance(k, bytes) else k
        if name == key and v is not None:
            return v.decode(errors="replace") if isinstance(v, bytes) else str(v)
    return None


def service_info_to_device(info: AsyncServiceInfo) -> CastDevice | None:
    """
    Convert a resolved Cast service to a CastDevice.

    The friendly name comes from the TXT "fn" field, falling back to the
    service instance name. Returns None when the service has no usable address.
    """
    host = get_first_valid_ip(info.parsed_addresses())
    if host is None:
        return None
    name = _txt_value(info, "fn")
    if not name:
        name = info.name.removesuffix(f".{info.type}")
    return CastDevice(
        name=name,
        host=host,
        port=info.port or DEFAULT_CAST_PORT,
        id=_txt_value(info, "id"),
    )


def match_device_by_name(devices: list[CastDevice], name: str) -> CastDevice | None:
    """Case-insensitive exact name match, then the first partial match."""
    search = name.lower()
    for device in devices:
        if device.name.lower() == search:
            return device
    for device in devices:
        if search in device.name.lower():
            return device
    return None


class DeviceDiscovery:
    """
    Discover Cast devices on the local network, with a short-lived cache.

    Concurrent callers share one in-flight scan.
    """

    _cache: list[CastDevice]
    _cache_time: float | None = None
    """Loop time of the last completed scan."""
    _scan_task: asyncio.Task[list[CastDevice]] | None = None

    def __init__(
        self,
        *,
        cache_ttl_ms: float = DEFAULT_CACHE_TTL_MS,
        zeroconf: AsyncZeroconf | None = None,
    ) -> None:
        """
        Initialize device discovery.

        Args:
            cache_ttl_ms: How long scan results stay valid (default: 30000).
            zeroconf: Shared AsyncZeroconf instance. When omitted, each scan
                creates and closes its own.
        """
        self._cache_ttl = cache_ttl_ms / 1000
        self._zeroconf = zeroconf
        self._cache = []

    @property
    def cached_devices(self) -> list[CastDevice]:
        """Devices from the last scan, without scanning."""
        return list(self._cache)

    def clear_cache(self) -> None:
        """Forget the last scan results."""
        self._cache = []
        self._cache_time = None

    def _cache_valid(self) -> bool:
        # An empty result from a recent scan is still valid
        if self._cache_time is None:
            return False
        return asyncio.get_running_loop().time() - self._cache_time < self._cache_ttl

    async def discover_devices(
        self,
        *,
        timeout_ms: float = DEFAULT_DISCOVERY_TIMEOUT_MS,
        force_refresh: bool = False,
    ) -> list[CastDevice]:
        """
        Discover Cast devices.

        Args:
            timeout_ms: How long to browse for devices (default: 5000).
            force_refresh: Ignore cached results.
        """
        if not force_refresh and self._cache_valid():
            return list(self._cache)

        if self._scan_task is None:
            self._scan_task = asyncio.get_running_loop().create_task(self._scan(timeout_ms / 1000))
        task = self._scan_task
        try:
            devices = await asyncio.shield(task)
        finally:
            if task.done() and self._scan_task is task:
                self._scan_task = None
        return list(devices)

    async def find_device_by_name(self, name: str) -> CastDevice | None:
        """Find a device by friendly name (exact match first, then partial)."""
        return match_device_by_name(await self.discover_devices(), name)

    async def find_device_by_id(self, device_id: str) -> CastDevice | None:
        """Find a device by the id from its mDNS TXT record."""
        for device in await self.discover_devices():
            if device.id == device_id:
                return device
        return None

    async def _scan(self, timeout: float) -> list[CastDevice]:
        """Browse for Cast services for the given time and return resolved devices."""
        loop = asyncio.get_running_loop()
        owns_zeroconf = self._zeroconf is None
        azc = self._zeroconf or AsyncZeroconf(ip_version=IPVersion.V4Only)
        devices: list[CastDevice] = []
        resolve_tasks: set[asyncio.Task[None]] = set()

        async def _resolve(zc: Zeroconf, service_type: str, name: str) -> None:
            info = AsyncServiceInfo(service_type, name)
            if not info.load_from_cache(zc):
                await info.async_request(zc, RESOLVE_TIMEOUT_MS)
            device = service_info_to_device(info)
            if device is None:
                logger.debug("No usable address for Cast service %s", name)
                return
            if any(d.host == device.host and d.port == device.port for d in devices):
                return
            logger.debug("Found Cast device %s at %s:%d", device.name, device.host, device.port)
            devices.append(device)

        def _on_service_state_change(
            zeroconf: Zeroconf,
            service_type: str,
            name: str,
            state_change: ServiceStateChange,
        ) -> None:
            if state_change not in (ServiceStateChange.Added, ServiceStateChange.Updated):
                return

            def _schedule() -> None:
                task = loop.create_task(_resolve(zeroconf, service_type, name))
                resolve_tasks.add(task)
                task.add_done_callback(resolve_tasks.discard)

            loop.call_soon_threadsafe(_schedule)

        browser = AsyncServiceBrowser(
            azc.zeroconf, CAST_SERVICE_TYPE, handlers=[_on_service_state_change]
        )
        try:
            await asyncio.sleep(timeout)
        finally:
            await browser.async_cancel()
            for task in list(resolve_tasks):
                task.cancel()
            for task in list(resolve_tasks):
                with suppress(asyncio.CancelledError):
                    await task
            if owns_zeroconf:
                await azc.async_close()

        self._cache = devices
        self._cache_time = loop.time()
        logger.debug("Discovery finished: %d Cast device(s)", len(devices))
        return devices

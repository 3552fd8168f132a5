from __future__ import annotations

import asyncio

import pytest
from zeroconf.asyncio import AsyncServiceInfo

from aiobookcast.cast.discovery import (
    CAST_SERVICE_TYPE,
    DeviceDiscovery,
    match_device_by_name,
    service_info_to_device,
)
from aiobookcast.models.cast import CastDevice

DEVICES = [
    CastDevice(name="Bedroom speaker", host="10.0.0.2", id="a1"),
    CastDevice(name="Kitchen", host="10.0.0.3", id="b2"),
    CastDevice(name="Kitchen display", host="10.0.0.4", port=8010, id="c3"),
]


def _service(
    instance: str, addresses: list[str], properties: dict[str, str], port: int | None = 8009
) -> AsyncServiceInfo:
    return AsyncServiceInfo(
        CAST_SERVICE_TYPE,
        f"{instance}.{CAST_SERVICE_TYPE}",
        port=port,
        properties=properties,
        parsed_addresses=addresses,
    )


def test_service_info_to_device_uses_txt_record() -> None:
    device = service_info_to_device(
        _service("Google-Home-1234", ["192.168.1.20"], {"fn": "Living Room", "id": "abc123"})
    )
    assert device == CastDevice(name="Living Room", host="192.168.1.20", port=8009, id="abc123")


def test_service_info_to_device_fallbacks() -> None:
    device = service_info_to_device(_service("Nest-Mini", ["169.254.1.1", "10.0.0.9"], {}, None))
    assert device == CastDevice(name="Nest-Mini", host="10.0.0.9", port=8009, id=None)
    assert service_info_to_device(_service("Nest-Mini", ["169.254.1.1"], {})) is None


def test_match_device_by_name() -> None:
    assert match_device_by_name(DEVICES, "kitchen") is DEVICES[1]
    assert match_device_by_name(DEVICES, "DISPLAY") is DEVICES[2]
    assert match_device_by_name(DEVICES, "bed") is DEVICES[0]
    assert match_device_by_name(DEVICES, "garage") is None


class _CountingDiscovery(DeviceDiscovery):
    scans = 0

    async def _scan(self, timeout: float) -> list[CastDevice]:
        self.scans += 1
        await asyncio.sleep(0.02)
        self._cache = list(DEVICES)
        self._cache_time = asyncio.get_running_loop().time()
        return list(DEVICES)


@pytest.mark.asyncio
async def test_cache_and_shared_scan() -> None:
    discovery = _CountingDiscovery(cache_ttl_ms=60000)

    first, second = await asyncio.gather(
        discovery.discover_devices(), discovery.discover_devices()
    )
    assert first == second == DEVICES
    assert discovery.scans == 1

    assert await discovery.find_device_by_name("kitchen") == DEVICES[1]
    assert await discovery.find_device_by_id("c3") == DEVICES[2]
    assert await discovery.find_device_by_id("zz") is None
    assert discovery.scans == 1

    await discovery.discover_devices(force_refresh=True)
    assert discovery.scans == 2

    discovery.clear_cache()
    assert discovery.cached_devices == []
    await discovery.discover_devices()
    assert discovery.scans == 3


@pytest.mark.asyncio
async def test_expired_cache_rescans() -> None:
    discovery = _CountingDiscovery(cache_ttl_ms=10)
    await discovery.discover_devices()
    await asyncio.sleep(0.03)
    await discovery.discover_devices()
    assert discovery.scans == 2

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

import pytest

from aiobookcast.cast.client import StatusEmitter, StatusHandler
from aiobookcast.models.cast import CastDevice, MediaLoadOptions, MediaStatus
from aiobookcast.models.types import PlayerState


class FakeProcess:
    """In-memory ProcessHandle. The encoder variant echoes its input to its output."""

    def __init__(self, name: str, args: Sequence[str], *, echo: bool = False) -> None:
        self.name = name
        self.args = list(args)
        self.echo = echo
        self.fail_start = False
        self.started = False
        self.stop_calls = 0
        self.input_closed = False
        self.written = bytearray()
        self._output: asyncio.Queue[bytes] = asyncio.Queue()
        self._exited = asyncio.Event()
        self._returncode: int | None = None

    @property
    def returncode(self) -> int | None:
        return self._returncode

    async def start(self) -> None:
        if self.fail_start:
            raise FileNotFoundError(f"{self.args[0]}: not found")
        self.started = True

    def feed(self, data: bytes) -> None:
        self._output.put_nowait(data)

    def finish(self, code: int = 0) -> None:
        if self._exited.is_set():
            return
        self._output.put_nowait(b"")
        self._returncode = code
        self._exited.set()

    async def read(self, n: int = 65536) -> bytes:
        return await self._output.get()

    async def write(self, data: bytes) -> None:
        self.written += data
        if self.echo:
            self.feed(bytes(data))

    def close_input(self) -> None:
        self.input_closed = True
        if self.echo:
            self.finish(0)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self._returncode is not None
        return self._returncode

    async def stop(self) -> None:
        self.stop_calls += 1
        self.finish(-15)


class FakeProcessFactory:
    """ProcessFactory creating FakeProcess handles with a scripted decoder."""

    def __init__(
        self,
        decoder_output: Sequence[bytes] = (),
        decoder_exit_code: int | None = 0,
        fail_start: Sequence[str] = (),
    ) -> None:
        self.decoder_output = list(decoder_output)
        self.decoder_exit_code = decoder_exit_code
        self.fail_start = set(fail_start)
        self.created: list[FakeProcess] = []

    def __call__(self, name: str, args: Sequence[str]) -> FakeProcess:
        proc = FakeProcess(name, args, echo=name == "encoder")
        proc.fail_start = name in self.fail_start
        if name == "decoder":
            for chunk in self.decoder_output:
                proc.feed(chunk)
            if self.decoder_exit_code is not None:
                proc.finish(self.decoder_exit_code)
        self.created.append(proc)
        return proc

    def get(self, name: str) -> list[FakeProcess]:
        return [proc for proc in self.created if proc.name == name]


class FakeCastClient:
    """PlaybackClient double with a settable status."""

    def __init__(
        self,
        position: float = 0.0,
        player_state: PlayerState = PlayerState.PLAYING,
    ) -> None:
        self.status: MediaStatus | None = MediaStatus(
            current_time=position, player_state=player_state
        )
        self.emitter = StatusEmitter()
        self.is_connected = True
        self.fail_pause = False
        self.fail_status = False
        self.pause_calls = 0
        self.status_calls = 0

    @property
    def connected(self) -> bool:
        return self.is_connected

    async def connect(self, device: CastDevice) -> None:
        self.is_connected = True

    async def disconnect(self) -> None:
        self.is_connected = False

    async def load_media(self, options: MediaLoadOptions) -> MediaStatus | None:
        return self.status

    async def pause(self) -> None:
        self.pause_calls += 1
        if self.fail_pause:
            raise ConnectionError("pause failed")

    async def play(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def seek(self, position: float) -> None:
        pass

    async def get_status(self) -> MediaStatus | None:
        self.status_calls += 1
        if self.fail_status:
            raise ConnectionError("status failed")
        return self.status

    def subscribe(self, handler: StatusHandler) -> Callable[[], None]:
        return self.emitter.subscribe(handler)


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture
def cast_client() -> FakeCastClient:
    return FakeCastClient()

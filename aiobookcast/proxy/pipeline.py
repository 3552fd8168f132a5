"""
Transcoding pipeline with real-time gain control.

Architecture:
    input URL -> ffmpeg decode (s16le) -> GainStage -> ffmpeg encode (mp3) -> PipelineOutput

The decoder and encoder are separate external processes so that gain changes
are applied to raw PCM between them while bytes are in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import suppress
from dataclasses import dataclass

from .gain import UNITY_GAIN, GainStage
from .process import ProcessFactory, ProcessHandle, SubprocessHandle

logger = logging.getLogger(__name__)

DEFAULT_BITRATE = "192k"
DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 2
DEFAULT_FFMPEG_PATH = "ffmpeg"

# Encoded chunks buffered in a PipelineOutput before the encoder reader waits.
OUTPUT_BUFFER_CHUNKS = 32


def parse_bitrate(value: str) -> int:
    """
    Parse an ffmpeg-style bitrate string into bits per second.

    Accepts "192k" style values or a plain integer string.
    """
    text = value.strip().lower()
    try:
        if text.endswith("k"):
            bits = int(float(text[:-1]) * 1000)
        else:
            bits = int(text)
    except ValueError as err:
        raise ValueError(f"Invalid bitrate: {value!r}") from err
    if bits <= 0:
        raise ValueError(f"bitrate must be positive, got {value!r}")
    return bits


class PipelineError(RuntimeError):
    """Raised through a PipelineOutput when a transcoding process fails."""

    def __init__(
        self,
        message: str,
        *,
        process: str | None = None,
        returncode: int | None = None,
    ) -> None:
        """Initialize with the failing process name and exit code, if known."""
        super().__init__(message)
        self.process = process
        self.returncode = returncode


class PipelineOutput:
    """
    Readable handle for the encoded stream.

    Iterate it with ``async for``. Iteration ends when the stream ends
    normally and raises the PipelineError when the output was destroyed.
    """

    def __init__(self, max_chunks: int = OUTPUT_BUFFER_CHUNKS) -> None:
        """Initialize an empty, open output."""
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._max_chunks = max_chunks
        self._space = asyncio.Event()
        self._closed = False
        self._error: Exception | None = None

    @property
    def closed(self) -> bool:
        """True once the output was ended or destroyed."""
        return self._closed

    @property
    def error(self) -> Exception | None:
        """Error the output was destroyed with, if any."""
        return self._error

    async def write(self, chunk: bytes) -> None:
        """Queue a chunk, waiting while the reader is behind."""
        while self._queue.qsize() >= self._max_chunks and not self._closed:
            self._space.clear()
            await self._space.wait()
        if self._closed:
            return
        self._queue.put_nowait(chunk)

    def end(self) -> None:
        """Mark the end of the stream after the queued chunks."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        self._space.set()

    def destroy(self, error: Exception | None = None) -> None:
        """Discard queued chunks and end the stream, raising error to the reader."""
        if error is not None and self._error is None:
            self._error = error
        while not self._queue.empty():
            self._queue.get_nowait()
        self._closed = True
        self._queue.put_nowait(None)
        self._space.set()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            self._space.set()
            if chunk is None:
                if self._error is not None:
                    raise self._error
                return
            yield chunk


@dataclass(frozen=True)
class PipelineOptions:
    """Options for an AudioPipeline."""

    input_url: str
    """Input URL or file path."""
    start_position: float = 0.0
    """Start offset in seconds."""
    output_bitrate: str = DEFAULT_BITRATE
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    initial_gain: float = UNITY_GAIN
    auth_header: str | None = None
    """Authorization header value for the input URL, e.g. "Bearer <token>"."""
    ffmpeg_path: str = DEFAULT_FFMPEG_PATH

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.start_position < 0:
            raise ValueError(f"start_position must not be negative, got {self.start_position}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")
        parse_bitrate(self.output_bitrate)


class AudioPipeline:
    """
    Decode, apply gain, and re-encode an audio stream through two processes.

    Playback position is estimated from the number of encoded bytes produced,
    never queried from the processes themselves.
    """

    _decoder: ProcessHandle | None = None
    _encoder: ProcessHandle | None = None
    _running: bool = False
    _stopped: bool = False
    _bytes_output: int = 0

    def __init__(
        self,
        options: PipelineOptions,
        *,
        process_factory: ProcessFactory = SubprocessHandle,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            options: Pipeline options.
            process_factory: Creates the decoder and encoder handles from
                (name, argv). Defaults to real subprocesses.
        """
        self._options = options
        self._process_factory = process_factory
        self._gain_stage = GainStage(initial_gain=options.initial_gain)
        self._output = PipelineOutput()
        self._bitrate = parse_bitrate(options.output_bitrate)
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def options(self) -> PipelineOptions:
        """Options this pipeline was created with."""
        return self._options

    @property
    def output(self) -> PipelineOutput:
        """Encoded output stream."""
        return self._output

    @property
    def gain_stage(self) -> GainStage:
        """Gain stage between decoder and encoder, for fades."""
        return self._gain_stage

    @property
    def gain(self) -> float:
        """Current gain."""
        return self._gain_stage.gain

    def set_gain(self, value: float) -> None:
        """Set the gain (clamped to 0.0 - 1.5)."""
        self._gain_stage.set_gain(value)

    @property
    def running(self) -> bool:
        """True while the encoder is producing output."""
        return self._running

    @property
    def bytes_output(self) -> int:
        """Total encoded bytes produced so far."""
        return self._bytes_output

    @property
    def current_position(self) -> float:
        """Estimated playback position in seconds."""
        return self._options.start_position + (self._bytes_output * 8) / self._bitrate

    async def start(self) -> None:
        """
        Spawn both processes and start moving bytes.

        Does nothing if the pipeline is already running. A process that fails
        to start destroys the output with a PipelineError.
        """
        if self._running:
            return
        if self._stopped:
            raise RuntimeError("Pipeline has been stopped")
        self._running = True

        ffmpeg = self._options.ffmpeg_path
        self._decoder = self._process_factory("decoder", [ffmpeg, *self.build_decoder_args()])
        self._encoder = self._process_factory("encoder", [ffmpeg, *self.build_encoder_args()])

        for handle in (self._decoder, self._encoder):
            try:
                await handle.start()
            except OSError as err:
                logger.error("Failed to start %s process: %s", handle.name, err)
                self._running = False
                await self._stop_processes()
                error = PipelineError(
                    f"Failed to start {handle.name}: {err}", process=handle.name
                )
                error.__cause__ = err
                self._output.destroy(error)
                return

        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._decode_loop(self._decoder, self._encoder)),
            loop.create_task(self._encode_loop(self._decoder, self._encoder)),
            loop.create_task(self._watch_decoder(self._decoder)),
        ]
        logger.debug(
            "Pipeline started (start=%.1fs, bitrate=%s)",
            self._options.start_position,
            self._options.output_bitrate,
        )

    async def stop(self) -> None:
        """Terminate both processes and close the output. Safe to call repeatedly."""
        self._running = False
        self._stopped = True
        current_task = asyncio.current_task()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            if task is not current_task:
                task.cancel()
        for task in tasks:
            if task is not current_task:
                with suppress(asyncio.CancelledError):
                    await task
        await self._stop_processes()
        self._output.end()

    def build_decoder_args(self) -> list[str]:
        """Build ffmpeg arguments for the decode process (input -> raw PCM on stdout)."""
        args = ["-hide_banner", "-loglevel", "error"]
        if self._options.auth_header:
            args += ["-headers", f"Authorization: {self._options.auth_header}\r\n"]
        if self._options.start_position > 0:
            args += ["-ss", str(self._options.start_position)]
        args += [
            "-i",
            self._options.input_url,
            "-f",
            "s16le",
            "-acodec",
            "pcm_s16le",
            "-ar",
            str(self._options.sample_rate),
            "-ac",
            str(self._options.channels),
            "pipe:1",
        ]
        return args

    def build_encoder_args(self) -> list[str]:
        """Build ffmpeg arguments for the encode process (raw PCM on stdin -> mp3)."""
        return [
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "s16le",
            "-ar",
            str(self._options.sample_rate),
            "-ac",
            str(self._options.channels),
            "-i",
            "pipe:0",
            "-acodec",
            "libmp3lame",
            "-b:a",
            self._options.output_bitrate,
            "-f",
            "mp3",
            "pipe:1",
        ]

    async def _stop_processes(self) -> None:
        for handle in (self._decoder, self._encoder):
            if handle is None:
                continue
            try:
                await handle.stop()
            except OSError as err:
                logger.warning("Error stopping %s process: %s", handle.name, err)

    async def _decode_loop(self, decoder: ProcessHandle, encoder: ProcessHandle) -> None:
        """Move decoded PCM through the gain stage into the encoder."""
        try:
            while chunk := await decoder.read():
                if processed := self._gain_stage.process(chunk):
                    await encoder.write(processed)
            if tail := self._gain_stage.flush():
                await encoder.write(tail)
        except (BrokenPipeError, ConnectionResetError) as err:
            logger.debug("Encoder input closed early: %s", err)
        finally:
            encoder.close_input()

    async def _encode_loop(self, decoder: ProcessHandle, encoder: ProcessHandle) -> None:
        """Forward encoded bytes to the output and finish it when the encoder exits."""
        while chunk := await encoder.read():
            self._bytes_output += len(chunk)
            await self._output.write(chunk)

        encoder_code = await encoder.wait()
        self._running = False
        if encoder_code != 0:
            logger.warning("Encoder exited with code %s", encoder_code)
            self._output.destroy(
                PipelineError(
                    f"Encoder exited with code {encoder_code}",
                    process=encoder.name,
                    returncode=encoder_code,
                )
            )
            return
        decoder_code = await decoder.wait()
        if decoder_code != 0:
            # _watch_decoder reports this
            return
        self._output.end()

    async def _watch_decoder(self, decoder: ProcessHandle) -> None:
        """Destroy the output as soon as the decoder fails."""
        code = await decoder.wait()
        if code != 0:
            logger.warning("Decoder exited with code %s", code)
            self._output.destroy(
                PipelineError(
                    f"Decoder exited with code {code}",
                    process=decoder.name,
                    returncode=code,
                )
            )

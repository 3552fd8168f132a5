"""
Audio proxy server.

Serves Audiobookshelf audio to Cast devices through an AudioPipeline per
request so the stream gain can be changed (and faded) while playing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Protocol

import orjson
from aiohttp import web
from mashumaro.mixins.orjson import DataClassORJSONMixin

from aiobookcast.models.proxy import (
    ErrorResponse,
    HealthStatus,
    SessionStatus,
    SuccessResponse,
    VolumeRequest,
    VolumeResponse,
)
from aiobookcast.util import get_local_ip

from .gain import MAX_GAIN, MIN_GAIN
from .pipeline import AudioPipeline, PipelineError, PipelineOptions

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8765
DEFAULT_HOST = "0.0.0.0"
SESSION_ID_HEADER = "X-Session-Id"


class StreamSource(Protocol):
    """Resolves a book id to an input URL for the decoder."""

    @property
    def auth_header(self) -> str | None:
        """Authorization header value for stream URLs, if any."""

    def stream_url(self, book_id: str) -> str:
        """Return the URL the decoder should read the book from."""


# Creates the pipeline for a new session.
PipelineFactory = Callable[[PipelineOptions], AudioPipeline]


@dataclass
class StreamSession:
    """One client's transcode-and-stream request."""

    id: str
    pipeline: AudioPipeline
    start_time: int
    """Creation time in epoch milliseconds."""
    book_id: str
    start_position: float
    """Start offset in seconds."""

    def status(self) -> SessionStatus:
        """Build the status reported over HTTP."""
        return SessionStatus(
            session_id=self.id,
            book_id=self.book_id,
            volume=self.pipeline.gain,
            position=self.pipeline.current_position,
            running=self.pipeline.running,
            start_time=self.start_time,
        )


class ProxyEvent:
    """Base event type used by ProxyServer.add_event_listener()."""


@dataclass
class SessionStartedEvent(ProxyEvent):
    """A stream session was created."""

    session_id: str
    book_id: str
    start_position: float


@dataclass
class SessionEndedEvent(ProxyEvent):
    """A stream session was stopped and removed."""

    session_id: str
    book_id: str


def _json_response(model: DataClassORJSONMixin, status: int = 200) -> web.Response:
    return web.Response(status=status, text=model.to_json(), content_type="application/json")


def _error_response(message: str, status: int) -> web.Response:
    return _json_response(ErrorResponse(error=message), status=status)


class ProxyServer:
    """
    HTTP proxy that streams gain-adjustable audio.

    Routes:
        GET    /stream/{book_id}?start=<seconds>
        POST   /volume/{session_id}   {"volume": 0.0-1.5}
        GET    /status/{session_id}
        DELETE /session/{session_id}
        GET    /health

    Every session owns its own pipeline. A session ends when its HTTP
    connection closes or when it is deleted; both paths stop the pipeline.
    """

    _sessions: dict[str, StreamSession]
    """Active sessions by id."""
    _event_cbs: list[Callable[[ProxyServer, ProxyEvent], None]]
    _app: web.Application | None = None
    _app_runner: web.AppRunner | None = None
    _tcp_site: web.TCPSite | None = None

    def __init__(
        self,
        stream_source: StreamSource,
        *,
        port: int = DEFAULT_PORT,
        host: str = DEFAULT_HOST,
        pipeline_factory: PipelineFactory = AudioPipeline,
        output_bitrate: str = "192k",
        ffmpeg_path: str = "ffmpeg",
    ) -> None:
        """
        Initialize the proxy server.

        Args:
            stream_source: Resolves book ids to input URLs (and auth header).
            port: TCP port to listen on (default: 8765).
            host: Address to bind (default: 0.0.0.0).
            pipeline_factory: Creates a pipeline for each session.
            output_bitrate: Encoder bitrate for all sessions.
            ffmpeg_path: ffmpeg executable used by the pipelines.
        """
        self._stream_source = stream_source
        self._port = port
        self._host = host
        self._pipeline_factory = pipeline_factory
        self._output_bitrate = output_bitrate
        self._ffmpeg_path = ffmpeg_path
        self._sessions = {}
        self._event_cbs = []

    @property
    def port(self) -> int:
        """Port the server listens on."""
        return self._port

    @property
    def host(self) -> str:
        """Address the server binds to."""
        return self._host

    @property
    def server_url(self) -> str:
        """Base URL that devices on the network can reach this server at."""
        host = self._host
        if host == DEFAULT_HOST:
            host = get_local_ip() or "127.0.0.1"
        return f"http://{host}:{self._port}"

    def stream_url(self, book_id: str, start_position: float = 0.0) -> str:
        """URL a playback device should load to stream the given book."""
        url = f"{self.server_url}/stream/{book_id}"
        if start_position > 0:
            url += f"?start={start_position}"
        return url

    @property
    def sessions(self) -> list[StreamSession]:
        """All active sessions."""
        return list(self._sessions.values())

    @property
    def session_count(self) -> int:
        """Number of active sessions."""
        return len(self._sessions)

    def get_session(self, session_id: str) -> StreamSession | None:
        """Return the session with the given id, if active."""
        return self._sessions.get(session_id)

    def set_session_volume(self, session_id: str, volume: float) -> bool:
        """
        Set the stream gain of a session.

        Returns:
            False if no such session exists.

        Raises:
            ValueError: If volume is outside 0.0 - 1.5.
        """
        if not MIN_GAIN <= volume <= MAX_GAIN:
            raise ValueError(f"volume must be in range {MIN_GAIN}..{MAX_GAIN}, got {volume}")
        session = self._sessions.get(session_id)
        if session is None:
            return False
        logger.debug("Setting volume of session %s to %.3f", session_id, volume)
        session.pipeline.set_gain(volume)
        return True

    def get_session_position(self, session_id: str) -> float | None:
        """Return the estimated position of a session, or None if unknown."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return session.pipeline.current_position

    async def stop_session(self, session_id: str) -> bool:
        """
        Stop a session's pipeline and remove it.

        Returns:
            False if no such session exists.
        """
        return await self._end_session(session_id)

    def add_event_listener(
        self, callback: Callable[[ProxyServer, ProxyEvent], None]
    ) -> Callable[[], None]:
        """
        Register a callback for session lifecycle events.

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._event_cbs.remove(callback)

        return _remove

    def _signal_event(self, event: ProxyEvent) -> None:
        """Signal an event to all registered listeners."""
        for cb in self._event_cbs:
            try:
                cb(self, event)
            except Exception:
                logger.exception("Error in event listener")

    def create_web_application(self) -> web.Application:
        """Create and configure the aiohttp web application."""
        app = web.Application()
        app.router.add_get("/stream/{book_id}", self._handle_stream)
        app.router.add_post("/volume/{session_id}", self._handle_volume)
        app.router.add_get("/status/{session_id}", self._handle_status)
        app.router.add_delete("/session/{session_id}", self._handle_delete)
        app.router.add_get("/health", self._handle_health)
        app.middlewares.append(self._not_found_middleware)
        return app

    async def start(self) -> None:
        """Start listening for requests."""
        if self._app is not None:
            logger.warning("Proxy server is already running")
            return

        logger.info("Starting audio proxy on %s:%d", self._host, self._port)
        self._app = self.create_web_application()
        # Cancel stream handlers when the requester disconnects
        self._app_runner = web.AppRunner(self._app, handler_cancellation=True)
        await self._app_runner.setup()
        try:
            self._tcp_site = web.TCPSite(
                self._app_runner,
                host=self._host if self._host != DEFAULT_HOST else None,
                port=self._port,
            )
            await self._tcp_site.start()
        except OSError as err:
            logger.error("Failed to start audio proxy on %s:%d: %s", self._host, self._port, err)
            await self._app_runner.cleanup()
            self._app_runner = None
            self._app = None
            self._tcp_site = None
            raise
        logger.info("Audio proxy listening at %s", self.server_url)

    async def stop(self) -> None:
        """Stop every session, then stop the HTTP server."""
        for session_id in list(self._sessions):
            await self._end_session(session_id)

        if self._tcp_site is not None:
            await self._tcp_site.stop()
            self._tcp_site = None
            logger.debug("TCP site stopped")
        if self._app_runner is not None:
            await self._app_runner.cleanup()
            self._app_runner = None
            logger.debug("App runner cleaned up")
        self._app = None
        logger.info("Audio proxy stopped")

    def _new_session_id(self, book_id: str) -> str:
        """Build a session id from the book id and creation time, unique among open sessions."""
        base = f"{book_id}-{int(time.time() * 1000)}"
        session_id = base
        suffix = 1
        while session_id in self._sessions:
            session_id = f"{base}-{suffix}"
            suffix += 1
        return session_id

    def _create_session(self, book_id: str, start_position: float) -> StreamSession:
        pipeline = self._pipeline_factory(
            PipelineOptions(
                input_url=self._stream_source.stream_url(book_id),
                start_position=start_position,
                output_bitrate=self._output_bitrate,
                auth_header=self._stream_source.auth_header,
                ffmpeg_path=self._ffmpeg_path,
            )
        )
        session = StreamSession(
            id=self._new_session_id(book_id),
            pipeline=pipeline,
            start_time=int(time.time() * 1000),
            book_id=book_id,
            start_position=start_position,
        )
        self._sessions[session.id] = session
        return session

    async def _end_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.pipeline.stop()
        logger.info("Session %s ended (book %s)", session_id, session.book_id)
        self._signal_event(SessionEndedEvent(session_id=session_id, book_id=session.book_id))
        return True

    @web.middleware
    async def _not_found_middleware(
        self,
        request: web.Request,
        handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
    ) -> web.StreamResponse:
        """Answer unknown routes and methods with a JSON 404."""
        try:
            return await handler(request)
        except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
            return _error_response("Not found", 404)

    async def _handle_stream(self, request: web.Request) -> web.StreamResponse:
        """Create a session and stream its pipeline output until either side ends."""
        book_id = request.match_info["book_id"]
        try:
            start_position = float(request.query.get("start", "0"))
        except ValueError:
            return _error_response("Invalid start position", 400)
        if not start_position >= 0:
            return _error_response("Invalid start position", 400)

        session = self._create_session(book_id, start_position)
        session_logger = logger.getChild(session.id)
        session_logger.info(
            "Session started for book %s at %.1fs from %s", book_id, start_position, request.remote
        )
        self._signal_event(
            SessionStartedEvent(
                session_id=session.id, book_id=book_id, start_position=start_position
            )
        )

        resp = web.StreamResponse(
            status=200,
            headers={
                "Cache-Control": "no-cache",
                SESSION_ID_HEADER: session.id,
            },
        )
        resp.content_type = "audio/mpeg"
        resp.enable_chunked_encoding()
        try:
            await resp.prepare(request)
            await session.pipeline.start()
            async for chunk in session.pipeline.output:
                await resp.write(chunk)
        except ConnectionResetError:
            session_logger.debug("Client disconnected")
        except asyncio.CancelledError:
            session_logger.debug("Stream cancelled")
            raise
        except PipelineError as err:
            session_logger.error("Stream failed: %s", err)
            # Close without the terminating chunk
            if request.transport is not None:
                request.transport.close()
        finally:
            await self._end_session(session.id)
        return resp

    async def _handle_volume(self, request: web.Request) -> web.Response:
        session_id = request.match_info["session_id"]
        try:
            data = orjson.loads(await request.read())
        except orjson.JSONDecodeError:
            return _error_response("Invalid JSON", 400)
        if not isinstance(data, dict):
            return _error_response("Invalid JSON", 400)
        try:
            volume_request = VolumeRequest(volume=data.get("volume"))
        except ValueError:
            return _error_response(f"Invalid volume ({MIN_GAIN}-{MAX_GAIN})", 400)

        if not self.set_session_volume(session_id, volume_request.volume):
            return _error_response("Session not found", 404)
        return _json_response(VolumeResponse(volume=volume_request.volume))

    async def _handle_status(self, request: web.Request) -> web.Response:
        session = self._sessions.get(request.match_info["session_id"])
        if session is None:
            return _error_response("Session not found", 404)
        return _json_response(session.status())

    async def _handle_delete(self, request: web.Request) -> web.Response:
        if not await self.stop_session(request.match_info["session_id"]):
            return _error_response("Session not found", 404)
        return _json_response(SuccessResponse())

    async def _handle_health(self, request: web.Request) -> web.Response:  # noqa: ARG002
        return _json_response(HealthStatus(sessions=len(self._sessions)))

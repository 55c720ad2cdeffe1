"""HTTP API server.

A FastAPI app served by an embedded uvicorn server. Requests are handled one
at a time:

- OPTIONS (any path)   -> 204 (CORS preflight)
- GET /api/processes   -> snapshot payload
- POST /api/kill       -> {"pid": N} terminates N with SIGTERM

Every response carries the CORS headers below and Connection: close.
"""

import asyncio
import contextlib
import json
import os
import re
import signal
import socket
import time
from http import HTTPStatus

import psutil
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from proc_manager import api
from proc_manager import logging as console
from proc_manager.collector import Snapshot, SnapshotCollector, SnapshotError
from proc_manager.config import Config
from proc_manager.serializer import error_payload, terminated_payload

log = structlog.get_logger()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_PID_PATTERN = re.compile(rb'"pid"\s*:\s*(-?\d+)')


def json_response(status: int, body: bytes) -> Response:
    """Send pre-rendered JSON bytes as they are."""
    return Response(content=body, status_code=status, media_type="application/json")


def parse_pid(body: bytes) -> int:
    """Extract the pid from a kill request body.

    A JSON object with an integer "pid" is preferred. Anything else falls back
    to scanning for `"pid": <int>`. Returns 0 when no pid can be found.
    """
    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if isinstance(data, dict):
        pid = data.get("pid")
        if isinstance(pid, int) and not isinstance(pid, bool):
            return pid
        return 0

    match = _PID_PATTERN.search(body)
    return int(match.group(1)) if match else 0


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to run_server()."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class ApiServer:
    """Serves snapshots and termination requests over HTTP."""

    def __init__(self, config: Config, collector: SnapshotCollector) -> None:
        self.config = config
        self.collector = collector
        self._lock = asyncio.Lock()
        self.app = self._build_app()
        self._socket: socket.socket | None = None
        self._uvicorn: _EmbeddedServer | None = None
        self._task: asyncio.Task | None = None

    @property
    def port(self) -> int:
        """Port actually bound (differs from config when configured as 0)."""
        if self._socket is None:
            raise RuntimeError("Server is not running")
        return self._socket.getsockname()[1]

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="proc-manager", docs_url=None, redoc_url=None, openapi_url=None)
        cfg = self.config.server

        @app.middleware("http")
        async def serialize_and_stamp(request: Request, call_next) -> Response:
            if request.method == "OPTIONS":
                response = Response(status_code=HTTPStatus.NO_CONTENT)
            else:
                async with self._lock:
                    try:
                        response = await call_next(request)
                    except Exception as e:
                        log.exception("request_failed", method=request.method, path=request.url.path)
                        console.error(f"{request.method} {request.url.path} failed: {e}")
                        response = json_response(
                            HTTPStatus.INTERNAL_SERVER_ERROR, error_payload("Internal server error")
                        )
            response.headers.update(CORS_HEADERS)
            response.headers["Connection"] = "close"
            return response

        @app.exception_handler(StarletteHTTPException)
        async def http_error(request: Request, exc: StarletteHTTPException) -> Response:
            # unknown paths and wrong methods are both "Not found"
            if exc.status_code in (HTTPStatus.NOT_FOUND, HTTPStatus.METHOD_NOT_ALLOWED):
                return json_response(HTTPStatus.NOT_FOUND, error_payload("Not found"))
            return json_response(exc.status_code, error_payload(str(exc.detail)))

        @app.get("/api/processes")
        async def get_processes() -> Response:
            return await self._get_processes()

        @app.post("/api/kill")
        async def post_kill(request: Request) -> Response:
            try:
                body = await asyncio.wait_for(request.body(), timeout=cfg.request_timeout)
            except TimeoutError:
                log.info("request_timeout", path="/api/kill")
                return json_response(HTTPStatus.BAD_REQUEST, error_payload("Bad request"))
            if len(body) > cfg.request_max_bytes:
                log.info("bad_request", error="body too large", size=len(body))
                return json_response(HTTPStatus.BAD_REQUEST, error_payload("Bad request"))
            return self._post_kill(body)

        return app

    async def start(self) -> None:
        """Bind and start accepting connections.

        Raises:
            OSError: If the address cannot be bound.
        """
        cfg = self.config.server
        family = socket.AF_INET6 if ":" in cfg.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((cfg.host, cfg.port))
        except OSError:
            sock.close()
            raise

        server = _EmbeddedServer(
            uvicorn.Config(
                self.app,
                http="h11",
                lifespan="off",
                log_config=None,
                access_log=False,
                server_header=False,
                timeout_keep_alive=max(1, int(cfg.request_timeout)),
                h11_max_incomplete_event_size=cfg.request_max_bytes,
            )
        )
        self._socket = sock
        self._uvicorn = server
        self._task = asyncio.create_task(server.serve(sockets=[sock]))
        while not server.started:
            if self._task.done():
                await self._task
                raise RuntimeError("API server exited during startup")
            await asyncio.sleep(0.01)
        log.info("server_started", host=cfg.host, port=self.port)

    async def stop(self) -> None:
        """Stop accepting connections and wait for in-flight requests."""
        if self._uvicorn is not None and self._task is not None:
            self._uvicorn.should_exit = True
            await self._task
        if self._socket is not None:
            self._socket.close()
        self._uvicorn = None
        self._task = None
        self._socket = None
        log.info("server_stopped")

    async def _get_processes(self) -> Response:
        started = time.monotonic()

        def report(snapshot: Snapshot) -> None:
            if snapshot.source != self.collector.sources[0].name:
                console.snapshot_fallback(f"served by {snapshot.source}")
            elapsed_ms = int((time.monotonic() - started) * 1000)
            console.snapshot_served(snapshot.count, snapshot.source, elapsed_ms)

        try:
            body = await api.get_snapshot_async(self.collector, on_collect=report)
        except SnapshotError as e:
            log.error("snapshot_failed", error=str(e))
            console.snapshot_failed(str(e))
            return json_response(
                HTTPStatus.INTERNAL_SERVER_ERROR, error_payload("Failed to read process list")
            )
        return json_response(HTTPStatus.OK, body)

    def _post_kill(self, body: bytes) -> Response:
        pid = parse_pid(body)
        try:
            api.terminate(pid)
        except api.InvalidPid:
            log.info("kill_rejected", pid=pid)
            return json_response(HTTPStatus.BAD_REQUEST, error_payload("Invalid PID"))
        except api.TerminateFailed as e:
            console.terminate_failed(pid, e.errno, e.message)
            return json_response(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                error_payload("kill failed", errno=e.errno, message=e.message),
            )
        console.process_terminated(pid)
        return json_response(HTTPStatus.OK, terminated_payload(pid))


# ─────────────────────────────────────────────────────────────────────────────
# PID file
# ─────────────────────────────────────────────────────────────────────────────


def read_pid_file(config: Config) -> int | None:
    """Return the pid recorded in the PID file, if any."""
    try:
        return int(config.pid_path.read_text().strip())
    except (OSError, ValueError):
        return None


def running_server_pid(config: Config) -> int | None:
    """Return the pid of a live proc-manager server, removing stale PID files.

    A pid that now belongs to a different program counts as stale.
    """
    pid = read_pid_file(config)
    if pid is None:
        if config.pid_path.exists():
            log.warning("pid_file_invalid", path=str(config.pid_path))
            remove_pid_file(config)
        return None

    try:
        cmdline = " ".join(psutil.Process(pid).cmdline()).lower()
    except psutil.NoSuchProcess:
        log.warning("pid_file_stale", reason="process not found", pid=pid)
        remove_pid_file(config)
        return None
    except psutil.AccessDenied:
        log.warning("pid_check_access_denied", pid=pid)
        return pid

    if "proc-manager" in cmdline or "proc_manager" in cmdline:
        return pid

    log.warning("pid_file_stale", reason="different process", pid=pid)
    remove_pid_file(config)
    return None


def write_pid_file(config: Config) -> None:
    config.pid_path.parent.mkdir(parents=True, exist_ok=True)
    config.pid_path.write_text(str(os.getpid()))
    log.debug("pid_file_written", path=str(config.pid_path))


def remove_pid_file(config: Config) -> None:
    config.pid_path.unlink(missing_ok=True)


async def run_server(config: Config) -> None:
    """Serve until SIGINT or SIGTERM.

    Raises:
        RuntimeError: If another server already owns the PID file.
    """
    from importlib.metadata import version

    console.configure(config)
    console.version_info("proc-manager", version("proc-manager"))
    log.info("server_starting", version=version("proc-manager"))

    existing = running_server_pid(config)
    if existing is not None:
        console.already_running(existing)
        log.error("server_already_running", pid=existing)
        raise RuntimeError("Server is already running")

    server = ApiServer(config, SnapshotCollector.from_config(config))
    await server.start()
    write_pid_file(config)
    console.server_started(config.server.host, server.port)

    shutdown = asyncio.Event()

    def handle_signal(sig: signal.Signals) -> None:
        console.signal_received(sig.name)
        log.info("signal_received", signal=sig.name)
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        await shutdown.wait()
    finally:
        console.server_stopping()
        await server.stop()
        remove_pid_file(config)
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        console.server_stopped()

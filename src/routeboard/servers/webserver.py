"""REST API and dashboard HTTP server for routeboard.

This module provides a small FastAPI application exposing the current
configuration snapshot (whole, or drilled down to provider, backend, server,
frontend and route), a write endpoint for the "web" provider, request metrics
and an optional process-variable dump, plus helpers to run it with uvicorn in
a background thread.

Read handlers load the snapshot exactly once and never mutate it. The only
mutating handler (PUT /api/providers/web) does not touch the store; it hands
the parsed configuration to the ConfigIngestChannel and answers from whatever
snapshot is current at that moment, which may not include the submission yet.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Mapping, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import (
    FileResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    StreamingResponse,
)
from pydantic import ValidationError

from ..config.config_parser import WebOptions
from ..expvars import DEFAULT_REGISTRY, VarRegistry, iter_json_chunks
from ..ingest import ConfigIngestChannel
from ..models import ConfigSnapshot, ProviderConfiguration, to_jsonable
from ..snapshot import SnapshotStore
from ..stats import RequestStats

logger = logging.getLogger("routeboard.webserver")

WEB_PROVIDER = "web"
READ_ONLY_MESSAGE = "REST API is in read-only mode"
WRONG_PROVIDER_MESSAGE = "Only 'web' provider can be updated through the REST API"


class ListenerBindError(OSError):
    """Raised when the REST listener cannot bind its address (fatal at startup)."""


class _Suppress2xxAccessFilter(logging.Filter):
    """Logging filter that drops uvicorn access records for HTTP 2xx responses.

    Inputs:
      - record: logging.LogRecord from uvicorn.access.

    Outputs:
      - bool: False for records that clearly carry a 2xx status, True otherwise
        (including when no status code can be determined).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        status_code = getattr(record, "status_code", None)

        if status_code is None:
            args = getattr(record, "args", None)
            if isinstance(args, dict):
                status_code = args.get("status_code") or args.get("status")
            elif isinstance(args, (tuple, list)) and args:
                # uvicorn passes the status as the last positional arg
                status_code = args[-1]

        try:
            code = int(status_code)
        except (TypeError, ValueError):
            return True

        return not (200 <= code <= 299)


def install_uvicorn_2xx_suppression() -> None:
    """Attach _Suppress2xxAccessFilter to the uvicorn.access logger once."""

    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, _Suppress2xxAccessFilter) for f in access_logger.filters):
        access_logger.addFilter(_Suppress2xxAccessFilter())


def resolve_www_root(www_root: str | None = None) -> str:
    """Brief: Resolve the directory that holds the dashboard assets.

    Inputs:
      - www_root: Optional configured override (web.www_root).

    Outputs:
      - str absolute path: the override when it is an existing directory, else
        $ROUTEBOARD_WWW_ROOT when set to a directory, else the ``html``
        directory bundled with the package.

    Example:
      >>> resolve_www_root(None).endswith("html")
      True
    """

    if www_root:
        cfg_path = Path(www_root).expanduser()
        if cfg_path.is_dir():
            return str(cfg_path.resolve())
        logger.warning("web.www_root %s is not a directory; using bundled dashboard", www_root)

    env_root = os.environ.get("ROUTEBOARD_WWW_ROOT")
    if env_root:
        env_path = Path(env_root).expanduser()
        if env_path.is_dir():
            return str(env_path.resolve())

    here = Path(__file__).resolve()
    return str((here.parent.parent / "html").resolve())


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")


def _lookup(mapping: Mapping[str, Any], key: str) -> Any:
    """Brief: Resolve one drill-down segment or abort the request with 404."""

    try:
        return mapping[key]
    except KeyError:
        raise _not_found() from None


def _json(value: Any) -> JSONResponse:
    return JSONResponse(content=to_jsonable(value), status_code=status.HTTP_200_OK)


def create_app(
    store: SnapshotStore[ConfigSnapshot],
    channel: ConfigIngestChannel,
    *,
    read_only: bool = False,
    debug: bool = False,
    stats: Optional[RequestStats] = None,
    variables: Optional[VarRegistry] = None,
    www_root: str | None = None,
) -> FastAPI:
    """Create the FastAPI app exposing the configuration REST API.

    Inputs:
      - store: SnapshotStore holding the current ConfigSnapshot.
      - channel: ConfigIngestChannel receiving configurations PUT by clients.
      - read_only: Reject PUT requests with 403 before any parsing.
      - debug: Register /debug/vars.
      - stats: Optional RequestStats (a fresh one is created when omitted).
      - variables: Registry dumped by /debug/vars (DEFAULT_REGISTRY when omitted).
      - www_root: Optional directory overriding the bundled dashboard assets.

    Outputs:
      - Configured FastAPI application.

    Example:
      >>> from routeboard.snapshot import new_config_store
      >>> app = create_app(new_config_store(), ConfigIngestChannel(), read_only=True)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        install_uvicorn_2xx_suppression()
        yield

    app = FastAPI(
        title="routeboard REST API",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.store = store
    app.state.channel = channel
    app.state.read_only = bool(read_only)
    app.state.stats = stats if stats is not None else RequestStats()
    app.state.variables = variables if variables is not None else DEFAULT_REGISTRY
    app.state.www_root = resolve_www_root(www_root)

    request_stats: RequestStats = app.state.stats

    @app.middleware("http")
    async def record_request_stats(request: Request, call_next):
        started = time.perf_counter()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            request_stats.record(status_code, time.perf_counter() - started)

    @app.get("/health")
    async def health() -> JSONResponse:
        """Return request metrics collected by the stats middleware."""

        return JSONResponse(content=request_stats.data())

    @app.get("/api")
    @app.get("/api/providers")
    async def get_config() -> JSONResponse:
        """Return the whole current snapshot keyed by provider id."""

        return _json(store.load())

    @app.get("/api/providers/{provider}")
    async def get_provider(provider: str) -> JSONResponse:
        snapshot = store.load()
        return _json(_lookup(snapshot.providers, provider))

    @app.put("/api/providers/{provider}")
    async def put_provider(provider: str, request: Request) -> Any:
        """Submit a new configuration for the "web" provider.

        Inputs:
          - provider: Target provider id; anything but "web" is rejected (400).
          - request body: JSON ProviderConfiguration.

        Outputs:
          - 400 with fixed text for another provider, 403 in read-only mode,
            400 with the parser message for a malformed body, otherwise 200
            with the current snapshot (which may predate this submission).
        """

        if provider != WEB_PROVIDER:
            return PlainTextResponse(
                WRONG_PROVIDER_MESSAGE, status_code=status.HTTP_400_BAD_REQUEST
            )
        if app.state.read_only:
            return PlainTextResponse(
                READ_ONLY_MESSAGE, status_code=status.HTTP_403_FORBIDDEN
            )

        body = await request.body()
        try:
            configuration = ProviderConfiguration.model_validate_json(body)
        except ValidationError as exc:
            logger.error("Error parsing configuration %s", exc)
            return PlainTextResponse(str(exc), status_code=status.HTTP_400_BAD_REQUEST)

        # Blocks this request (not the event loop) while the queue is full.
        await run_in_threadpool(channel.send, WEB_PROVIDER, configuration)
        return _json(store.load())

    @app.get("/api/providers/{provider}/backends")
    async def get_backends(provider: str) -> JSONResponse:
        snapshot = store.load()
        return _json(_lookup(snapshot.providers, provider).backends)

    @app.get("/api/providers/{provider}/backends/{backend}")
    async def get_backend(provider: str, backend: str) -> JSONResponse:
        snapshot = store.load()
        provider_cfg = _lookup(snapshot.providers, provider)
        return _json(_lookup(provider_cfg.backends, backend))

    @app.get("/api/providers/{provider}/backends/{backend}/servers")
    async def get_servers(provider: str, backend: str) -> JSONResponse:
        snapshot = store.load()
        provider_cfg = _lookup(snapshot.providers, provider)
        return _json(_lookup(provider_cfg.backends, backend).servers)

    @app.get("/api/providers/{provider}/backends/{backend}/servers/{server}")
    async def get_server(provider: str, backend: str, server: str) -> JSONResponse:
        snapshot = store.load()
        provider_cfg = _lookup(snapshot.providers, provider)
        backend_cfg = _lookup(provider_cfg.backends, backend)
        return _json(_lookup(backend_cfg.servers, server))

    @app.get("/api/providers/{provider}/frontends")
    async def get_frontends(provider: str) -> JSONResponse:
        snapshot = store.load()
        return _json(_lookup(snapshot.providers, provider).frontends)

    @app.get("/api/providers/{provider}/frontends/{frontend}")
    async def get_frontend(provider: str, frontend: str) -> JSONResponse:
        snapshot = store.load()
        provider_cfg = _lookup(snapshot.providers, provider)
        return _json(_lookup(provider_cfg.frontends, frontend))

    @app.get("/api/providers/{provider}/frontends/{frontend}/routes")
    async def get_routes(provider: str, frontend: str) -> JSONResponse:
        snapshot = store.load()
        provider_cfg = _lookup(snapshot.providers, provider)
        return _json(_lookup(provider_cfg.frontends, frontend).routes)

    @app.get("/api/providers/{provider}/frontends/{frontend}/routes/{route}")
    async def get_route(provider: str, frontend: str, route: str) -> JSONResponse:
        snapshot = store.load()
        provider_cfg = _lookup(snapshot.providers, provider)
        frontend_cfg = _lookup(provider_cfg.frontends, frontend)
        return _json(_lookup(frontend_cfg.routes, route))

    @app.get("/")
    async def index() -> RedirectResponse:
        return RedirectResponse(url="/dashboard/", status_code=status.HTTP_302_FOUND)

    @app.get("/dashboard/{path:path}")
    async def dashboard(path: str) -> FileResponse:
        """Serve dashboard assets from www_root with the /dashboard/ prefix stripped.

        Inputs:
          - path: Requested asset path; empty or a directory maps to index.html.

        Outputs:
          - FileResponse when the file exists under www_root, otherwise 404.
        """

        root_abs = os.path.abspath(app.state.www_root)
        candidate = os.path.abspath(os.path.join(root_abs, path))

        # Refuse anything that escapes the asset root.
        if candidate != root_abs and not candidate.startswith(root_abs + os.sep):
            raise _not_found()
        if os.path.isdir(candidate):
            candidate = os.path.join(candidate, "index.html")
        if not os.path.isfile(candidate):
            raise _not_found()
        return FileResponse(candidate)

    if debug:

        @app.get("/debug/vars")
        def debug_vars() -> StreamingResponse:
            """Stream every registered process variable as one JSON object."""

            return StreamingResponse(
                iter_json_chunks(app.state.variables),
                media_type="application/json; charset=utf-8",
            )

    return app


def _bind_listener(host: str, port: int) -> socket.socket:
    """Brief: Create the listening TCP socket for the REST server.

    Inputs:
      - host: Interface to bind ("" for all interfaces, as a dual-stack IPv6
        socket when the platform supports it).
      - port: TCP port (0 picks a free port).

    Outputs:
      - Bound, listening socket.

    Raises:
      - ListenerBindError: the address cannot be bound.
    """

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    # An empty host means every interface, IPv6 included where the stack allows.
    dualstack = not host and socket.has_dualstack_ipv6()
    if dualstack:
        family = socket.AF_INET6
    try:
        return socket.create_server((host, port), family=family, dualstack_ipv6=dualstack)
    except OSError as exc:
        raise ListenerBindError(
            exc.errno, f"cannot listen on {host or '*'}:{port}: {exc.strerror or exc}"
        ) from exc


class WebServerHandle:
    """Handle for the background REST server thread.

    Inputs (constructor):
      - thread: Thread running the uvicorn server loop.
      - server: Optional uvicorn.Server used to request shutdown.
      - sock: Optional listening socket (used to report the bound address).

    Outputs:
      - WebServerHandle instance with stop(), is_running() and address.

    Example:
      >>> # created via start_webserver() in main
    """

    def __init__(
        self,
        thread: threading.Thread,
        server: Any | None = None,
        sock: socket.socket | None = None,
    ) -> None:
        self._thread = thread
        self._server = server
        self._sock = sock

    @property
    def address(self) -> tuple[str, int] | None:
        if self._sock is None:
            return None
        name = self._sock.getsockname()
        return str(name[0]), int(name[1])

    def is_running(self) -> bool:
        return self._thread.is_alive()

    def stop(self, timeout: float = 5.0) -> None:
        """Ask uvicorn to exit and wait for the thread to finish.

        Inputs:
          - timeout: Seconds to wait for the thread to exit.
        """

        if self._server is not None:
            self._server.should_exit = True
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("REST server thread did not exit within %.1fs", timeout)


def start_webserver(
    options: WebOptions,
    store: SnapshotStore[ConfigSnapshot],
    channel: ConfigIngestChannel,
    *,
    debug: bool = False,
    stats: Optional[RequestStats] = None,
    variables: Optional[VarRegistry] = None,
) -> WebServerHandle:
    """Bind the listen address and serve the REST API on a background thread.

    Inputs:
      - options: WebOptions (address, TLS files, read-only, www_root).
      - store: SnapshotStore read by every GET handler.
      - channel: ConfigIngestChannel fed by PUT /api/providers/web.
      - debug: Register /debug/vars.
      - stats / variables: Optional collectors shared with the app.

    Outputs:
      - WebServerHandle for the running server.

    Raises:
      - ListenerBindError: the address cannot be bound or the TLS files cannot
        be loaded. Binding happens before this function returns, so the caller
        sees the failure synchronously; there is no retry.

    Example:
      >>> handle = start_webserver(WebOptions(address="127.0.0.1:0"), store, channel)
      >>> handle.is_running()
      True
    """

    import uvicorn

    app = create_app(
        store,
        channel,
        read_only=options.read_only,
        debug=debug,
        stats=stats,
        variables=variables,
        www_root=options.www_root,
    )

    host, port = options.host, options.port
    uvicorn_kwargs: dict[str, Any] = {}
    if options.tls_enabled:
        uvicorn_kwargs["ssl_certfile"] = options.cert_file
        uvicorn_kwargs["ssl_keyfile"] = options.key_file
    elif options.cert_file or options.key_file:
        logger.warning("Both web.cert_file and web.key_file are required for TLS; serving plaintext")

    config_uvicorn = uvicorn.Config(
        app, host=host or "0.0.0.0", port=port, log_level="info", **uvicorn_kwargs
    )
    try:
        # Loads the TLS context now so bad certificate files fail startup.
        config_uvicorn.load()
    except OSError as exc:
        raise ListenerBindError(exc.errno, f"cannot load TLS files: {exc}") from exc

    sock = _bind_listener(host, port)
    server = uvicorn.Server(config_uvicorn)

    def _runner() -> None:
        try:
            server.run(sockets=[sock])
        except (Exception, SystemExit):
            # uvicorn exits via SystemExit on startup failures
            logger.exception("REST server thread terminated unexpectedly")
        finally:
            sock.close()

    thread = threading.Thread(target=_runner, name="routeboard-webserver", daemon=True)
    thread.start()
    handle = WebServerHandle(thread, server, sock)

    bound_host, bound_port = handle.address or (host, port)
    logger.info(
        "Started routeboard REST API on %s://%s:%d%s",
        "https" if options.tls_enabled else "http",
        bound_host,
        bound_port,
        " (read-only)" if options.read_only else "",
    )
    return handle

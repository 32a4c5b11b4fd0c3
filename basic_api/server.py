"""HTTP layer: the FastAPI app and the runner that serves it"""
import asyncio
import contextlib
import logging
import socket
from typing import Optional, Tuple

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from basic_api.config import DEFAULT_ENV_FILE, Config, load_config
from basic_api.database import Database, build_pool
from basic_api.errors import AppError, BindError, ServerError
from basic_api.models import ErrorResponse, HealthResponse
from basic_api.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint"""
    database: Database = request.app.state.database
    if database.is_closed:
        logger.warning("Database connection pool is closed")
    return HealthResponse()


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(request: Request):
    """Readiness check: the pool can hand out a working connection"""
    database: Database = request.app.state.database
    config: Config = request.app.state.config
    if database.is_closed:
        raise HTTPException(status_code=503, detail="Database pool closed")
    if not await database.ping(timeout=config.pool_settings.acquire_timeout):
        raise HTTPException(status_code=503, detail="Database unavailable")
    return HealthResponse()


async def app_error_handler(request: Request, exc: AppError):
    logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=ErrorResponse(error=str(exc)).model_dump(exclude_none=True))


def create_app(config: Config, database: Database) -> FastAPI:
    """Build the app; handlers read ``config`` and ``database`` from app.state"""
    app = FastAPI(title="Basic API", version="1.0.0")
    app.state.config = config
    app.state.database = database
    app.add_exception_handler(AppError, app_error_handler)
    app.include_router(router)
    return app


class _Server(uvicorn.Server):
    """uvicorn server that leaves process signals to the ShutdownCoordinator"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self):
        pass


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a TCP socket; port 0 lets the OS pick one"""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BindError(host, port, e.strerror or str(e)) from e
    return sock


class ServiceRunner:
    """
    Runs the service from configuration to shutdown.

    ``run()`` loads configuration, builds the pool, binds the listener and then
    serves until the shutdown coordinator resolves. Any failure before the
    socket is bound aborts startup; nothing is served. On shutdown the listener
    stops accepting, in-flight requests finish (bounded by the configured
    shutdown timeout, if any) and the pool is closed.
    """

    def __init__(
        self,
        env_file: Optional[str] = DEFAULT_ENV_FILE,
        shutdown: Optional[ShutdownCoordinator] = None,
        config: Optional[Config] = None,
    ):
        self.env_file = env_file
        self.shutdown = shutdown or ShutdownCoordinator()
        self.config = config
        self.database: Optional[Database] = None
        self.app: Optional[FastAPI] = None
        self._socket: Optional[socket.socket] = None
        self._server: Optional[_Server] = None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """Bound (host, port), with the real port when 0 was configured"""
        if self._socket is None or self._socket.fileno() == -1:
            return None
        host, port = self._socket.getsockname()[:2]
        return host, port

    @property
    def started(self) -> bool:
        return self._server is not None and self._server.started

    def bind(self) -> Tuple[str, int]:
        self._socket = bind_socket(str(self.config.server_host), self.config.server_port)
        return self.address

    async def run(self):
        if self.config is None:
            self.config = load_config(self.env_file)
        self.database = await build_pool(self.config.database_url, self.config.pool_settings)
        try:
            self.app = create_app(self.config, self.database)
            host, port = self.bind()
            logger.info("Listening on %s:%d", host, port)
            await self._serve()
        finally:
            await self.database.close()

    async def _serve(self):
        server = _Server(uvicorn.Config(
            self.app,
            lifespan="off",
            log_config=None,
            timeout_graceful_shutdown=self.config.shutdown_timeout,
        ))
        self._server = server

        serving = asyncio.ensure_future(server.serve(sockets=[self._socket]))
        stopping = asyncio.ensure_future(self.shutdown.wait())
        try:
            await asyncio.wait({serving, stopping}, return_when=asyncio.FIRST_COMPLETED)
            if stopping.done():
                logger.info("Stopped accepting connections, draining in-flight requests")
                server.should_exit = True
            try:
                await serving
            except Exception as e:
                raise ServerError(str(e) or type(e).__name__) from e
            if not server.started:
                raise ServerError("listener failed to start")
        finally:
            stopping.cancel()
            if not serving.done():
                serving.cancel()
            # uvicorn skips its own shutdown when asked to exit during startup
            for listener in getattr(server, "servers", []):
                listener.close()
            self._socket.close()
        logger.info("Server stopped")

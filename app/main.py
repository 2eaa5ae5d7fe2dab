import asyncio

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.rate_limit import limiter
from app.features.users.routes import router as user_router
from app.features.permissions.routes import router as permission_router
from app.features.editor.dependencies import session_store
from app.features.editor.routes import router as editor_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Agent Permission Editor",
    description="Backend-for-frontend for editing agent permission matrices on the healthcare platform",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


async def sweep_idle_sessions():
    """Evict editor sessions nobody has touched within the idle timeout."""
    while True:
        await asyncio.sleep(config.EDITOR_SESSION_SWEEP_SECONDS)
        try:
            evicted = await session_store.evict_idle()
        except Exception:
            log.exception("Idle session sweep failed")
            continue
        if evicted:
            log.info("Evicted %d idle editor session(s)", evicted)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")
    app.state.session_sweeper = asyncio.create_task(sweep_idle_sessions())


@app.on_event("shutdown")
async def shutdown():
    """Persist edits still waiting in the debounce window."""
    sweeper = getattr(app.state, "session_sweeper", None)
    if sweeper is not None:
        sweeper.cancel()
    await session_store.drain()


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Agent Permission Editor API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "platform": config.PLATFORM_API_URL,
        "authentication": {
            "info": "All endpoints except / and /health require the platform Bearer token",
            "roles": ["admin", "clinic", "doctor"],
        },
        "features": {
            "editor": "Agent permission matrix sessions with debounced saves to the platform",
            "permissions": "Stateless reconcile/check helpers and the editor audit trail",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "openSessions": len(session_store)}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Stateless matrix helpers and audit trail
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])

# Editor sessions
app.include_router(editor_router, prefix="/editor", tags=["editor"])

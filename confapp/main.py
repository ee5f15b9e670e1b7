from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from confapp.core import config
from confapp.core.database.engine import init_db
from confapp.core.errors import ApiError
from confapp.features.users.routes import router as user_router
from confapp.features.organizations.routes import router as organization_router
from confapp.features.organizations.routes import conference_router
from confapp.features.permissions.routes import router as permission_router
from confapp.features.submissions.routes import router as submission_router
from confapp.features.submissions.routes import admin_router as admin_submission_router
from confapp.features.payments.routes import router as payment_router
from confapp.features.ai.routes import router as ai_router
from confapp.features.users.dependencies import get_authorization_header
from confapp.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Conference Submissions API",
    description="Multi-tenant conference submissions with scoped roles, payments and AI analysis",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
default_limits = [config.RATE_LIMIT_DEFAULT] if config.RATE_LIMIT_DEFAULT and not config.TESTING else []
limiter = Limiter(key_func=get_authorization_header, default_limits=default_limits)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.confapp.features."), timing=timing, tags=tags))


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


@app.exception_handler(ApiError)
async def api_error_handler(_request: Request, exc: ApiError):
    if exc.status_code >= 500:
        log.error("Unhandled API error %s: %s", exc.code, exc.message)
    else:
        log.info("API error %s: %s", exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder({"error": exc.to_dict()}))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[str(key)] = error["msg"]
    log.info("Request validation error %s", errors)
    body = {"error": {"code": "VALIDATION_ERROR", "message": "Request validation failed", "details": errors}}
    return JSONResponse(status_code=400, content=jsonable_encoder(body))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    body = {"error": {"code": "RATE_LIMITED", "message": "You are going too fast", "details": None}}
    return JSONResponse(body, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Conference Submissions API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header "
                    "and the tenant organization in the x-org-id header",
            "public_endpoints": ["/", "/health", "/payments/webhook"]
        },
        "features": {
            "permissions": "Role hierarchy across organization, conference and track scopes",
            "organizations": "Organizations, conferences, tracks and conference settings",
            "submissions": "Draft, payment, submit and decision lifecycle with a timeline",
            "payments": "Payment intents confirmed by provider webhook",
            "ai": "Consent-gated summaries, format checks and similarity scoring"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Organizations, conferences and tracks
app.include_router(organization_router, prefix="/orgs", tags=["organizations"])
app.include_router(conference_router, prefix="/conferences", tags=["conferences"])

# Memberships and authorization queries (paths are absolute)
app.include_router(permission_router, tags=["permissions"])

# Submission lifecycle
app.include_router(submission_router, prefix="/submissions", tags=["submissions"])
app.include_router(admin_submission_router, prefix="/admin/submissions", tags=["admin-submissions"])

# Payment webhook and intent transitions
app.include_router(payment_router, prefix="/payments", tags=["payments"])

# AI analysis (paths are absolute)
app.include_router(ai_router, tags=["ai"])

import logging
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from app.core.config import settings
from app.core.errors import InvalidRequest, ServiceError, Unavailable
from app.api.v1.time_entries import router as time_entries_router
from app.api.v1.reports import router as reports_router
from app.db.mongo import get_mongo_client, get_mongo_db, close_mongo_client, ping_mongo
from app.db.mongo_indexes import ensure_indexes

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Timesheet Billing Backend")

# Build CORS allowlist from local dev + configured origins
_base_origins = {
    "http://localhost:4200",
    "http://127.0.0.1:4200",
}
if settings.FRONTEND_BASE_URL:
    _base_origins.add(settings.FRONTEND_BASE_URL)
for o in settings.ALLOWED_ORIGINS:
    _base_origins.add(o)
# Normalize by stripping trailing slashes to match Origin header format
_allowed_origins = sorted({o.rstrip('/') for o in _base_origins if o})

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_origin_regex=r"^http(s)?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    # Error context may hold datetimes and ids from serialized entries
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    wrapped = InvalidRequest("Invalid request", errors=exc.errors())
    return JSONResponse(status_code=wrapped.status_code, content=jsonable_encoder(wrapped.to_dict()))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    wrapped = Unavailable(str(exc) or exc.__class__.__name__)
    return JSONResponse(status_code=wrapped.status_code, content=jsonable_encoder(wrapped.to_dict()))


@app.get("/")
def read_root():
    return {"message": "Welcome to the Timesheet Billing API"}


@app.get("/health")
async def health_check(db: AsyncIOMotorDatabase = Depends(get_mongo_db)):
    return {"status": "ok", "mongo": await ping_mongo(db)}


# Mount API routers
app.include_router(time_entries_router, prefix="/api/v1")
app.include_router(reports_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup():
    # Initialize Mongo client
    get_mongo_client()
    # Create required indexes (non-fatal on failure)
    try:
        await ensure_indexes()
    except Exception as exc:
        logging.getLogger("uvicorn.error").warning(
            "Mongo index initialization failed: %s", exc
        )


@app.on_event("shutdown")
async def on_shutdown():
    # Close Mongo client
    close_mongo_client()

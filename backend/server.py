"""
UGC Command Portal - Workflow API

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, LOG_LEVEL, client, get_db
from services.errors import WorkflowError

# Configuration logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("ugc_portal")

# Créer l'app
app = FastAPI(
    title="UGC Command Portal",
    description="CRM, ticketing & marketing workflows",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== CORRELATION ID ====================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid.uuid4())


# ==================== ERROR HANDLERS ====================

HTTP_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
}


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    cid = _correlation_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"[{exc.code}] {request.method} {request.url.path} cid={cid}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_dict(), "correlation_id": cid},
        headers={"X-Correlation-ID": cid},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    cid = _correlation_id(request)
    field_errors = {
        ".".join(str(p) for p in err["loc"] if p != "body") or "body": err["msg"]
        for err in exc.errors()
    }
    logger.warning(f"[VALIDATION_ERROR] {request.method} {request.url.path} cid={cid}: {field_errors}")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error_code": "VALIDATION_ERROR",
            "error": "Invalid request",
            "field_errors": field_errors,
            "correlation_id": cid,
        },
        headers={"X-Correlation-ID": cid},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    cid = _correlation_id(request)
    code = HTTP_STATUS_CODES.get(
        exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "VALIDATION_ERROR"
    )
    logger.warning(f"[{code}] {request.method} {request.url.path} cid={cid}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error_code": code, "error": str(exc.detail), "correlation_id": cid},
        headers={"X-Correlation-ID": cid},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    cid = _correlation_id(request)
    logger.exception(f"[INTERNAL_ERROR] {request.method} {request.url.path} cid={cid}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error_code": "INTERNAL_ERROR",
            "error": "Internal server error",
            "correlation_id": cid,
        },
        headers={"X-Correlation-ID": cid},
    )


# ==================== IMPORT DES ROUTES ====================

from routes import activity, auth, design_versions, workflows  # noqa: E402

# Routes avec préfixe /api
app.include_router(auth.router, prefix="/api")
app.include_router(design_versions.router, prefix="/api")
app.include_router(workflows.router, prefix="/api")
app.include_router(activity.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/api/health")
async def health():
    return {
        "name": "UGC Command Portal API",
        "version": app.version,
        "status": "running",
    }


# ==================== STARTUP ====================

@app.on_event("startup")
async def startup():
    logger.info("UGC Command Portal API started")

    db = app.dependency_overrides.get(get_db, get_db)()

    from services.transition_tables import WORKFLOWS

    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.activity_logs.create_index([("tenant", 1), ("entity_type", 1), ("entity_id", 1)])
    await db.activity_logs.create_index("created_at")
    await db.comments.create_index([("entity_type", 1), ("entity_id", 1)])
    await db.design_versions.create_index([("request_id", 1), ("version_number", 1)], unique=True)
    for workflow in WORKFLOWS.values():
        await db[workflow.collection].create_index("id", unique=True)
        await db[workflow.collection].create_index([("tenant", 1), ("state", 1)])
        await db[workflow.collection].create_index("created_at")

    logger.info("MongoDB indexes ready")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)

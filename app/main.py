"""FastAPI Application Entry Point.

Configures the app, lifespan, CORS, error mapping, and includes all
route modules.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentflow.config import API_HOST, API_PORT, CORS_ORIGINS as _CORS_ORIGINS
from agentflow.errors import NotFoundError, ValidationError
from agentflow.logging_config import get_api_logger

# Ensure node kinds are registered at import time
import agentflow.nodes  # noqa: F401

from .database import close_db, init_db
from .runs import close_runs, get_invoker

logger = get_api_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database and agent invoker lifecycle."""
    await init_db()
    invoker = get_invoker()
    logger.info(f"Agent invoker: {type(invoker).__name__}")
    yield
    await close_runs()
    await close_db()


app = FastAPI(title="Agent Flow API", version="1.0.0", lifespan=lifespan)

CORS_ORIGINS = [o.strip() for o in _CORS_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=400,
        content={"message": str(exc), "errors": [issue.to_dict() for issue in exc.issues]},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# Include routers
from .routes.agent_apps import router as agent_apps_router  # noqa: E402
from .routes.agent_chains import router as agent_chains_router  # noqa: E402
from .routes.chain_executions import router as chain_executions_router  # noqa: E402
from .routes.executions import router as executions_router  # noqa: E402
from .routes.validation import router as validation_router  # noqa: E402

app.include_router(agent_apps_router)
app.include_router(agent_chains_router)
app.include_router(chain_executions_router)
app.include_router(executions_router)
app.include_router(validation_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "ok"}


def run():
    """Serve the API with uvicorn (``agentflow-api`` console script)."""
    import uvicorn

    uvicorn.run("app.main:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run()

"""FastAPI application for the waiter agents service."""

import functools
import re
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agents_hub.infra.config import config
from agents_hub.infra.error_handler import AgentServiceError, InvalidRequest
from agents_hub.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the long-lived services once and share them through app.state."""
    from agents_hub.adapters.llm_runner import OpenAIAgentRunner
    from agents_hub.adapters.store import SQLStore
    from agents_hub.infra.clock import SystemClock
    from agents_hub.logging.event_logger import AgentEventLogger
    from agents_hub.services.budget import BudgetEnforcer
    from agents_hub.services.context_builder import build_agent_context
    from agents_hub.services.pipeline import WaiterPipeline
    from agents_hub.services.runtime_config import RuntimeConfigResolver
    from agents_hub.services.tools import ToolExecutor

    app_logger.info("Application starting up", extra={"region": config.REGION, "port": config.AGENTS_PORT})

    store = SQLStore()
    clock = SystemClock()
    budget = BudgetEnforcer(store, clock)
    resolver = RuntimeConfigResolver(store, budget, clock)
    event_logger = AgentEventLogger(store, clock)
    runner = OpenAIAgentRunner(ToolExecutor(store, clock), clock)

    app.state.event_logger = event_logger
    app.state.context_factory = functools.partial(build_agent_context, store, clock)
    app.state.waiter_pipeline = WaiterPipeline(resolver, budget, event_logger, runner, clock)

    yield

    # Shutdown
    app_logger.info("Application shutting down")

    from agents_hub.infra.database import engine
    engine.dispose()


app = FastAPI(
    title="Waiter Agents API",
    description="""
    Multi-agent restaurant waiter: upsell suggestions, allergen safety checks
    and grounded diner replies with citations, under per-tenant spend guardrails.
    """,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Agents",
            "description": "Diner-facing waiter pipeline and feedback",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from agents_hub.infra.middleware import RequestContextMiddleware, setup_cors

app.add_middleware(RequestContextMiddleware)
setup_cors(app)

# Import and register routers
from agents_hub.api.routers import agents, health

app.include_router(agents.router)
app.include_router(health.router)


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Schema failures are echoed back so clients can correct the form."""
    details = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "details": details},
    )


@app.exception_handler(AgentServiceError)
async def agent_service_exception_handler(request: Request, exc: AgentServiceError):
    """Handle the service's own error hierarchy."""
    if exc.status_code >= 500:
        app_logger.error(
            f"Agent service error: {exc.message}",
            extra={"error_code": exc.error_code, "path": request.url.path},
        )
    else:
        app_logger.warning(
            f"Request rejected: {exc.message}",
            extra={"error_code": exc.error_code, "path": request.url.path},
        )

    if isinstance(exc, InvalidRequest):
        content = {"error": exc.error_code, "details": exc.details}
    else:
        content = {"error": exc.error_code, "message": exc.public_message()}
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    message = str(exc)
    if re.search(r"disabled", message, re.IGNORECASE):
        return JSONResponse(
            status_code=503,
            content={"error": "agent_disabled", "message": "Agent is currently disabled by an administrator."},
        )
    if re.search(r"budget", message, re.IGNORECASE):
        return JSONResponse(
            status_code=429,
            content={"error": "agent_budget_exceeded", "message": "Agent budget exceeded."},
        )

    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=config.AGENTS_HOST,
        port=config.AGENTS_PORT,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )

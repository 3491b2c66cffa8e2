"""
FastAPI control surface for the engine.

Lets a host UI start, stop and inspect a supervisor over HTTP.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .config_schema import EngineConfig
from .exceptions import ConfigurationError
from .supervisor import Supervisor
from .version import __version__

logger = logging.getLogger(__name__)


# Pydantic models for API requests and responses
class StartRequest(BaseModel):
    overrides: Dict[str, Any] = Field(
        default_factory=dict, description="Config fields to override for this run"
    )


class ControlResponse(BaseModel):
    ok: bool
    state: str
    stats: Dict[str, Any]
    error: Optional[Any] = None


class HealthResponse(BaseModel):
    status: str
    engine_state: str
    version: str


def create_app(
    supervisor: Supervisor,
    config_provider: Callable[[], EngineConfig],
    allow_origins: Optional[List[str]] = None,
) -> FastAPI:
    """
    Build the control API around ``supervisor``.

    ``config_provider`` is called on every start so edits to the config file
    or environment are picked up without restarting the process.
    """
    app = FastAPI(title="Flash Arbitrage Engine", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins or ["http://localhost", "http://127.0.0.1"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    def control_response(result: Dict[str, Any]) -> ControlResponse:
        return ControlResponse(
            ok=result["ok"],
            state=supervisor.state.value,
            stats=result["stats"],
            error=result.get("error"),
        )

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok", engine_state=supervisor.state.value, version=__version__
        )

    @app.get("/api/engine/status")
    async def engine_status():
        return supervisor.get_status()

    @app.post("/api/engine/start", response_model=ControlResponse)
    async def start_engine(request: Optional[StartRequest] = None):
        try:
            config = config_provider()
            if request and request.overrides:
                config = config.with_overrides(**request.overrides)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=e.to_dict())
        except PydanticValidationError as e:
            raise HTTPException(
                status_code=400,
                detail=[
                    {"loc": list(err["loc"]), "msg": err["msg"]}
                    for err in e.errors(include_input=False, include_url=False)
                ],
            )

        logger.info("Engine start requested via API")
        return control_response(await supervisor.start(config))

    @app.post("/api/engine/stop", response_model=ControlResponse)
    async def stop_engine():
        logger.info("Engine stop requested via API")
        return control_response(await supervisor.stop())

    @app.get("/api/engine/trades")
    async def trades(limit: int = 50):
        return supervisor.trade_history(limit)

    @app.get("/api/engine/events")
    async def events(limit: int = 50):
        return supervisor.events.recent_events(limit)

    return app

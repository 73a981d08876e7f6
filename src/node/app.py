# src/node/app.py
"""
Node HTTP API - FastAPI application exposing one node's control surface

GET  /status    live (200) or faulty (500)
POST /message   buffer a peer vote {phase, round, value, from}
GET  /start     start consensus (idempotent)
GET  /stop      kill the node
GET  /getState  {killed, x, decided, k}
GET  /health    engine status, thresholds and buffer statistics
"""

import logging
from contextlib import asynccontextmanager
from typing import Literal, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from src.ben_or import ConsensusError, UNKNOWN
from src.middleware import CorrelationIdMiddleware

from .service import NodeService

logger = logging.getLogger("benor.node")


class VoteMessage(BaseModel):
    """A vote sent by a peer"""
    phase: Literal[1, 2]
    round: int = Field(..., ge=0)
    value: Union[Literal[0, 1], Literal["?"]]
    sender: int = Field(..., ge=0, alias="from")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"phase": 1, "round": 0, "value": UNKNOWN, "from": 2}
        }


def create_app(service: NodeService) -> FastAPI:
    """Build the FastAPI app serving a single node"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service.mark_ready()
        yield
        await service.close()

    app = FastAPI(
        title=f"Ben-Or Node {service.node_id}",
        description="Randomized binary consensus participant",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(CorrelationIdMiddleware)
    app.state.node = service

    @app.exception_handler(ConsensusError)
    async def consensus_error_handler(request: Request, exc: ConsensusError):
        logger.debug(f"Rejected {request.method} {request.url.path}: {exc.error_code}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.get("/status", response_class=PlainTextResponse)
    async def get_status():
        if service.is_faulty:
            return PlainTextResponse(service.status(), status_code=500)
        return PlainTextResponse(service.status(), status_code=200)

    @app.post("/message")
    async def post_message(message: VoteMessage):
        accepted = service.receive_message(
            phase=message.phase,
            round_number=message.round,
            value=message.value,
            sender=message.sender,
        )
        return {"success": True, "accepted": accepted}

    @app.get("/start")
    async def start_consensus():
        started = service.start()
        return {"success": True, "started": started}

    @app.get("/stop")
    async def stop_consensus():
        service.stop()
        return {"success": True}

    @app.get("/getState")
    async def get_state():
        return service.get_state()

    @app.get("/health")
    async def get_health():
        return service.get_health()

    return app

from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gsp.config import get_settings
from gsp.context import PanelContext
from gsp.control.lifecycle import INSTALLING
from gsp.errors import (
    AllocationNotFoundError,
    GspError,
    NodeNotFoundError,
    PanelValidationError,
    PowerTimeoutError,
    PreconditionError,
    WaitCancelled,
)
from gsp.logging_config import setup_logging

ERROR_STATUS = [
    (NodeNotFoundError, 404),
    (AllocationNotFoundError, 409),
    (PanelValidationError, 422),
    (PreconditionError, 400),
    (PowerTimeoutError, 504),
    (WaitCancelled, 503),
]


class CreateRequest(BaseModel):
    node_id: int
    options: dict | None = None


class PowerRequest(BaseModel):
    signal: str
    skip_wait: bool = False


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_format, settings.log_level)
    panel = PanelContext.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        panel.close()

    app = FastAPI(title="Game Server Panel API", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(GspError)
    def handle_gsp_error(request: Request, exc: GspError):
        status = 502
        for exc_type, code in ERROR_STATUS:
            if isinstance(exc, exc_type):
                status = code
                break
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    def _get_record(server: str):
        record = panel.state.get_by_name_or_id(server)
        if not record:
            raise HTTPException(status_code=404, detail="Server not found")
        return record

    @app.get("/servers")
    def list_servers():
        return [asdict(s) for s in panel.state.list_servers()]

    @app.get("/servers/{server}")
    def get_server(server: str):
        return asdict(_get_record(server))

    @app.post("/servers")
    def create_server(req: CreateRequest):
        record = panel.lifecycle.create(req.node_id, req.options)
        return asdict(record)

    @app.post("/servers/{server}/power")
    def power_server(server: str, req: PowerRequest):
        record = _get_record(server)
        try:
            panel.lifecycle.power(record, req.signal, skip_wait=req.skip_wait)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"status": req.signal, "id": record.id}

    @app.post("/servers/{server}/suspend")
    def suspend_server(server: str):
        record = _get_record(server)
        panel.lifecycle.suspend(record)
        return {"status": "suspended", "id": record.id}

    @app.get("/servers/{server}/usage")
    def server_usage(server: str):
        record = _get_record(server)
        usage = panel.lifecycle.get_resource_usage(record)
        if usage is None:
            return {"state": "unknown"}
        if usage == INSTALLING:
            return {"state": INSTALLING}
        return {"state": usage.current_state, "resources": usage.resources}

    @app.delete("/servers/{server}")
    def delete_server(server: str, keep_token: bool = False):
        record = _get_record(server)
        panel.lifecycle.delete(record.server_id, None if keep_token else record.account_id)
        panel.state.delete_server(record.id)
        return {"status": "deleted", "id": record.id}

    @app.post("/sync")
    def sync():
        return [asdict(r) for r in panel.reconciler.reconcile()]

    return app

import os
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chatbridge.config import AppConfig, DedupConfig, save_yaml_config
from chatbridge.core.errors import DeleteFailed, SendFailed
from chatbridge.core.models import ChatEvent
from chatbridge.relay import ChatRelay
from chatbridge.storage.event_buffer import EventBuffer


class ChatEventIn(BaseModel):
    chat_type: str
    sender: str
    message: str
    world: Optional[str] = None
    avatar_url: Optional[str] = None


def _require_admin(config: AppConfig):
    expected = os.getenv(config.admin.token_env, "")

    async def verifier(request: Request):
        token = request.headers.get("X-Admin-Token")
        if not expected or token != expected:
            raise HTTPException(status_code=401, detail="unauthorized")
        return True

    return verifier


def create_admin_app(
    config: AppConfig,
    relay: ChatRelay,
    events: EventBuffer,
    config_path: Optional[Path] = None,
) -> FastAPI:
    app = FastAPI(title=f"{config.app.name} Admin", docs_url=None, redoc_url=None)

    verifier = _require_admin(config)

    @app.post("/api/chat")
    async def chat(body: ChatEventIn, _: bool = Depends(verifier)):
        try:
            record = await relay.relay(ChatEvent(**body.dict()))
        except SendFailed as exc:
            raise HTTPException(502, str(exc))
        return {"ok": True, "sent": record is not None, "id": record.id if record else None}

    @app.get("/api/status")
    async def status(_: bool = Depends(verifier)):
        return {"dedup": config.dedup.dict(), **relay.stats()}

    @app.get("/api/logs")
    async def logs(limit: int = 100, _: bool = Depends(verifier)):
        return {"events": events.recent(limit)}

    @app.post("/api/reconcile")
    async def reconcile(_: bool = Depends(verifier)):
        try:
            report = await relay.sweep()
        except DeleteFailed as exc:
            raise HTTPException(502, str(exc))
        if report is None:
            return {"ok": True, "skipped": True}
        return {"ok": True, "skipped": False, "report": report.to_dict()}

    @app.post("/api/dedup")
    async def update_dedup(body: dict, _: bool = Depends(verifier)):
        current = config.dedup.dict()
        try:
            updated = DedupConfig.parse_obj(
                {**current, **{k: v for k, v in body.items() if k in current}}
            )
        except ValueError as exc:
            raise HTTPException(400, str(exc))
        config.dedup = updated
        relay.dedup.config = updated
        if config_path is not None:
            save_yaml_config(config, config_path)
        events.add("dedup_update", settings=updated.dict())
        return {"ok": True, "dedup": updated.dict()}

    @app.exception_handler(HTTPException)
    async def http_exc(_, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    return app

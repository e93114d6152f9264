"""HTTP surface: health, tool listing, run (route + execute), execute."""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .runtime import Runtime
from .tools.contract import ErrorCode, ToolResult, USER_ERRORS

logger = logging.getLogger(__name__)

_FORBIDDEN = frozenset({
    ErrorCode.DENIED_TOOL,
    ErrorCode.CONFIRMATION_REQUIRED,
    ErrorCode.DENIED_AGENT_TOOLSET,
    ErrorCode.DENIED_PATH_ALLOWLIST,
    ErrorCode.DENIED_COMMAND_ALLOWLIST,
})


# ── Pydantic schemas ──────────────────────────────────────────

class RunRequest(BaseModel):
    text: str
    agent: Optional[str] = None


class ExecuteRequest(BaseModel):
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    agent: Optional[str] = None


def status_for(result: ToolResult) -> int:
    if result.ok:
        return 200
    code = result.error.code if result.error else ErrorCode.EXEC_ERROR
    if code in _FORBIDDEN:
        return 403
    if code in USER_ERRORS:
        return 400
    if code == ErrorCode.ROUTING_TIMEOUT:
        return 504
    return 500


def _respond(result: ToolResult) -> JSONResponse:
    return JSONResponse(status_code=status_for(result), content=result.to_dict())


def create_app(runtime: Runtime) -> FastAPI:
    app = FastAPI(title="assistant")
    app.state.runtime = runtime

    @app.get("/health")
    async def health():
        return {"ok": True, "tools": len(runtime.registry)}

    @app.get("/tools")
    async def list_tools():
        return {"tools": [dict(spec.compact(), status=spec.status) for spec in runtime.registry.list()]}

    @app.post("/run")
    async def run(req: RunRequest):
        return _respond(await runtime.run(req.text, req.agent))

    @app.post("/execute")
    async def execute(req: ExecuteRequest):
        return _respond(await runtime.execute(req.tool, req.args, req.agent))

    @app.post("/permissions/reload")
    async def reload_permissions():
        config = runtime.reload_permissions()
        return {"ok": True, "source_path": config.source_path}

    return app

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from libs.core import logging as core_logging
from libs.core.models import ToolErrorKind, ToolName, ToolResult, utc_timestamp

from ..cv_core import CVServerSettings, DispatcherHandle, load_settings

core_logging.configure_logging("cv")
LOGGER = core_logging.get_logger("cv")

STATUS_BY_ERROR_KIND: Dict[ToolErrorKind, int] = {
    ToolErrorKind.invalid_arguments: 400,
    ToolErrorKind.unknown_tool: 500,
    ToolErrorKind.channel_unavailable: 500,
    ToolErrorKind.delivery_failed: 500,
    ToolErrorKind.internal: 500,
}


class ToolCallRequest(BaseModel):
    tool: Optional[str] = None
    arguments: Optional[Dict[str, Any]] = None


class SearchRequest(BaseModel):
    query: Optional[Any] = None


class EmailRequest(BaseModel):
    recipient: Optional[Any] = None
    subject: Optional[Any] = None
    body: Optional[Any] = None


def _error_response(status_code: int, error: str, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": error, **extra}
    content["timestamp"] = utc_timestamp()
    return JSONResponse(status_code=status_code, content=content)


def _result_response(result: ToolResult) -> JSONResponse:
    status_code = 200
    if not result.success:
        status_code = STATUS_BY_ERROR_KIND.get(result.error_kind, 500)
    return JSONResponse(status_code=status_code, content=result.to_envelope())


def _log_startup(handle: DispatcherHandle, settings: CVServerSettings) -> None:
    dispatcher = handle.dispatcher
    tools = dispatcher.get_tool_definitions() if dispatcher is not None else []
    LOGGER.info(
        "cv_server_started",
        host=settings.host,
        port=settings.port,
        tools=[tool.name for tool in tools],
        **handle.status(),
    )


def create_app(
    handle: Optional[DispatcherHandle] = None,
    settings: Optional[CVServerSettings] = None,
    initialize_on_startup: bool = True,
) -> FastAPI:
    settings = settings or load_settings()
    handle = handle or DispatcherHandle.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if initialize_on_startup:
            await handle.ensure_initialized()
        _log_startup(handle, settings)
        yield
        LOGGER.info("cv_server_shutdown")

    app = FastAPI(title="CV Tool Server", lifespan=lifespan)
    app.state.dispatcher_handle = handle
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.mount("/metrics", make_asgi_app())

    async def run_tool(name: str, args: Optional[Dict[str, Any]]) -> JSONResponse:
        if settings.reinitialize_per_request:
            await handle.initialize()
        dispatcher = handle.dispatcher
        if dispatcher is None:
            return _error_response(503, "Server not properly initialized")
        result = await dispatcher.execute(name, args or {})
        return _result_response(result)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(
            400, "Invalid request body", details=jsonable_encoder(exc.errors())
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return _error_response(404, "Route not found", path=request.url.path)
        return _error_response(exc.status_code, str(exc.detail))

    @app.get("/")
    def server_info() -> Dict[str, Any]:
        return {
            "message": "CV Tool Server API",
            "status": "running",
            "initialized": handle.is_initialized,
            "state": handle.state.value,
            "timestamp": utc_timestamp(),
        }

    @app.get("/health")
    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "initialized": handle.is_initialized,
            "state": handle.state.value,
            "timestamp": utc_timestamp(),
        }

    @app.get("/api/status")
    def status() -> Dict[str, Any]:
        return {**handle.status(), "timestamp": utc_timestamp()}

    @app.get("/api/tools")
    async def list_tools() -> JSONResponse:
        if settings.reinitialize_per_request:
            await handle.initialize()
        dispatcher = handle.dispatcher
        if dispatcher is None:
            return _error_response(503, "Server not properly initialized")
        definitions = dispatcher.get_tool_definitions()
        return JSONResponse(
            content={
                "success": True,
                "tools": [definition.model_dump(mode="json") for definition in definitions],
                "names": [definition.name for definition in definitions],
                "descriptions": {
                    definition.name: definition.description for definition in definitions
                },
                "count": len(definitions),
            }
        )

    @app.post("/api/tools/call")
    async def call_tool(request: ToolCallRequest) -> JSONResponse:
        if not request.tool:
            return _error_response(400, "Tool name is required")
        return await run_tool(request.tool, request.arguments)

    @app.post("/api/tools/{tool_name}")
    async def execute_tool(
        tool_name: str, payload: Optional[Dict[str, Any]] = Body(default=None)
    ) -> JSONResponse:
        return await run_tool(tool_name, payload)

    @app.get("/api/personal")
    async def personal() -> JSONResponse:
        return await run_tool(ToolName.get_personal_info.value, {})

    @app.get("/api/experience")
    async def experience() -> JSONResponse:
        return await run_tool(ToolName.get_work_experience.value, {})

    @app.get("/api/education")
    async def education() -> JSONResponse:
        return await run_tool(ToolName.get_education.value, {})

    @app.get("/api/skills")
    async def skills() -> JSONResponse:
        return await run_tool(ToolName.get_skills.value, {})

    @app.post("/api/search")
    async def search(request: SearchRequest) -> JSONResponse:
        return await run_tool(ToolName.search_cv.value, request.model_dump(exclude_none=True))

    @app.post("/api/email")
    async def email(request: EmailRequest) -> JSONResponse:
        return await run_tool(ToolName.send_email.value, request.model_dump(exclude_none=True))

    return app


app = create_app()


def run() -> None:
    settings: CVServerSettings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)

"""HTTP 路由层。

把 HTTP 方法/路径映射到 service 模块的函数，本身不含业务逻辑：

    POST   /api/chat      {message, sessionId, conversationHistory?}
    GET    /api/history   ?sessionId=
    DELETE /api/history   ?sessionId=

所有响应都带宽松的 CORS 头；任意路径的 OPTIONS 返回 204 且无响应体。
路由函数是同步函数，由服务器线程池执行：推理一旦开始，即使客户端断开也会完成持久化。
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_core.api import service
from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError, InvalidArgument, NotFound, UpstreamModelError
from chat_core.infrastructure.logging.logger import logger


def cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_allow_origin,
        "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Accept",
    }


def json_response(data: Dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=data, status_code=status_code, headers=cors_headers())


def error_response(message: str, status_code: int) -> JSONResponse:
    return json_response({"success": False, "error": message}, status_code)


class HistoryTurn(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class ChatBody(BaseModel):
    message: Optional[str] = None
    sessionId: Optional[str] = None
    conversationHistory: Optional[List[HistoryTurn]] = None


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        if isinstance(exc, (InvalidArgument, NotFound)):
            return error_response(exc.message, exc.http_status)
        if isinstance(exc, UpstreamModelError):
            # 模型错误信息原样透传
            return error_response(exc.message or "Model call failed", 500)
        logger.error(
            "Request failed",
            extra={"extra": {"path": request.url.path, "code": exc.code, "error": exc.message}},
        )
        return error_response(exc.message or "Internal server error", exc.http_status)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # 405 也按未匹配路由处理
        if exc.status_code in (404, 405):
            return await business_error_handler(request, NotFound(message="Not Found"))
        return error_response(str(exc.detail), exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return error_response("Missing required fields", 400)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled exception",
            extra={"extra": {"path": request.url.path, "type": type(exc).__name__}},
        )
        return error_response("Internal server error", 500)


def create_app() -> FastAPI:
    app = FastAPI(title="chat_core", version="0.1.0")
    register_error_handlers(app)

    @app.middleware("http")
    async def cors_middleware(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=cors_headers())
        response = await call_next(request)
        for key, value in cors_headers().items():
            response.headers.setdefault(key, value)
        return response

    @app.get("/")
    def health() -> JSONResponse:
        return json_response({"ok": True, "message": "chat_core is running"})

    @app.post("/api/chat")
    def chat(body: ChatBody) -> JSONResponse:
        if not body.message or not body.sessionId:
            return error_response("Missing required fields", 400)
        hint = [turn.model_dump() for turn in body.conversationHistory or []]
        message = service.run_chat(body.sessionId, body.message, hint)
        return json_response({"success": True, "message": message})

    @app.get("/api/history")
    def get_history(sessionId: Optional[str] = None) -> JSONResponse:
        if not sessionId:
            return error_response("Missing sessionId", 400)
        return json_response({"success": True, "messages": service.get_history(sessionId)})

    @app.delete("/api/history")
    def delete_history(sessionId: Optional[str] = None) -> JSONResponse:
        if not sessionId:
            return error_response("Missing sessionId", 400)
        service.clear_history(sessionId)
        return json_response({"success": True, "message": "History deleted"})

    return app


app = create_app()


def main() -> None:
    import uvicorn

    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()

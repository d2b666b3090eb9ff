"""
Shared - ロギング設定とリクエストロギング・インターセプタ

各サービスの main.py から configure_logging() を呼び出し、
RequestLoggingMiddleware を ASGI アプリに追加する。

- 標準 logging のレコードも structlog の ProcessorFormatter を通すので、
  logging.getLogger(__name__) で出したログにも trace_id が付く
- trace_id は X-Trace-Id ヘッダを引き継ぐか新規に採番し、
  structlog.contextvars でリクエストのスコープに束縛する
- スコープはリクエスト終了時 (成功・失敗・例外のいずれでも) に束縛前の状態へ戻す
"""

import json
import logging
import sys
import time
from uuid import uuid4

import structlog
from structlog.types import EventDict, WrappedLogger

TRACE_HEADER = "x-trace-id"

# マスク対象のヘッダ
SENSITIVE_HEADERS = frozenset(
    {"authorization", "x-api-key", "api-key", "cookie", "set-cookie"}
)

# ログに残すボディの最大バイト数
MAX_LOGGED_BODY = 4096

request_logger = structlog.get_logger("request")
response_logger = structlog.get_logger("response")


class SerializationError(ValueError):
    """ログ出力用のペイロード変換に失敗した。呼び出し元へは伝播させない。"""


def configure_logging(service: str, level: str = "INFO", fmt: str = "console") -> None:
    """標準 logging と structlog を同じフォーマッタに揃える。"""

    def add_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        return event_dict

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service,
    ]

    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def current_trace_id() -> str | None:
    """現在のリクエストスコープに束縛された trace_id を返す。"""
    return structlog.contextvars.get_contextvars().get("trace_id")


def trace_headers() -> dict[str, str]:
    """下流サービスへ trace_id を引き継ぐためのヘッダ。"""
    trace_id = current_trace_id()
    return {TRACE_HEADER: trace_id} if trace_id else {}


def mask_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        name: "***" if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def render_payload(body: bytes) -> object:
    """ボディを JSON として解釈する。解釈できなければ SerializationError。"""
    if not body:
        return None
    try:
        return json.loads(body[:MAX_LOGGED_BODY])
    except (UnicodeDecodeError, ValueError) as exc:
        raise SerializationError(str(exc)) from exc


def _payload_for_log(body: bytes) -> object:
    try:
        return render_payload(body)
    except SerializationError:
        return f"<{len(body)} bytes>"


class RequestLoggingMiddleware:
    """
    すべての受信リクエストを包む ASGI インターセプタ。

    1. trace_id を束縛してリクエスト行とヘッダを記録
    2. アプリを呼び出し、ステータス・所要時間・ペイロードを記録
    3. finally で trace_id の束縛を元に戻す
    """

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in scope.get("headers", [])
        }
        trace_id = headers.get(TRACE_HEADER) or uuid4().hex
        tokens = structlog.contextvars.bind_contextvars(trace_id=trace_id)

        started = time.perf_counter()
        request_body = bytearray()
        response_body = bytearray()
        status = {"code": 500}

        async def receive_wrapper():
            message = await receive()
            if message["type"] == "http.request" and len(request_body) < MAX_LOGGED_BODY:
                request_body.extend(message.get("body", b""))
            return message

        async def send_wrapper(message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
                message["headers"] = [
                    *message.get("headers", []),
                    (TRACE_HEADER.encode("latin-1"), trace_id.encode("latin-1")),
                ]
            elif message["type"] == "http.response.body" and len(response_body) < MAX_LOGGED_BODY:
                response_body.extend(message.get("body", b""))
            await send(message)

        request_logger.info(
            "request.received",
            method=scope["method"],
            path=scope["path"],
            query=scope.get("query_string", b"").decode("latin-1"),
            headers=mask_headers(headers),
        )
        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        except Exception:
            response_logger.exception(
                "request.failed",
                method=scope["method"],
                path=scope["path"],
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                request=_payload_for_log(bytes(request_body)),
            )
            raise
        else:
            response_logger.info(
                "request.completed",
                method=scope["method"],
                path=scope["path"],
                status=status["code"],
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                request=_payload_for_log(bytes(request_body)),
                response=_payload_for_log(bytes(response_body)),
            )
        finally:
            structlog.contextvars.reset_contextvars(**tokens)

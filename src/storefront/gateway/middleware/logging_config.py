"""structlog 配置模块

dev 模式：控制台可读输出
json 模式：结构化 JSON 输出（生产环境，交给外部日志收集）
"""

import logging
import os

import structlog

_LOG_FORMATS = ("dev", "json")


def _build_renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging() -> None:
    """初始化 structlog + 标准库 logging

    环境变量：
    - STOREFRONT_LOG_FORMAT: "dev"（默认）或 "json"
    - STOREFRONT_LOG_LEVEL: 日志级别，默认 INFO
    """
    log_format = os.environ.get("STOREFRONT_LOG_FORMAT", "dev").lower()
    if log_format not in _LOG_FORMATS:
        log_format = "dev"
    log_level = os.environ.get("STOREFRONT_LOG_LEVEL", "INFO").upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn / stripe 等第三方日志经同一 formatter 输出
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=_build_renderer(log_format),
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # 请求日志由 LoggingMiddleware 输出
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

"""
日志模块 - 结构化日志、耗时统计、业务事件

日志文件（LOG_DIR 下）：
    fengzhui_app.log          全部应用日志，按大小滚动
    fengzhui_errors.log       ERROR 及以上
    fengzhui_performance.log  批量任务与慢操作耗时，按天滚动
    fengzhui_finance.log      状态迁移与资金变动事件，按天滚动，保留 90 天
"""
import logging
import os
import sys
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any, Dict, Optional

import orjson
import psutil

from config import settings

# 超过该耗时（秒）的操作记为警告
SLOW_OPERATION_SECONDS = 1.0


class StructuredFormatter(logging.Formatter):
    """JSON 行格式，便于日志平台检索订单号、结算单号等字段"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exc_type"] = record.exc_info[0].__name__
            entry["exc"] = "".join(traceback.format_exception(*record.exc_info))

        fields = getattr(record, "extra_fields", None)
        if fields:
            entry.update(fields)
        timing = getattr(record, "performance", None)
        if timing:
            entry["performance"] = timing

        return orjson.dumps(entry, default=str).decode("utf-8")


def _is_business_event(record: logging.LogRecord) -> bool:
    return "event" in (getattr(record, "extra_fields", None) or {})


def _is_timing(record: logging.LogRecord) -> bool:
    return getattr(record, "performance", None) is not None


class OperationTimer:
    """记录一次操作的耗时与内存变化"""

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.started = time.perf_counter()
        self.rss_before = self._rss_mb()

    @staticmethod
    def _rss_mb() -> float:
        return psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)

    def finish(self, success: bool = True, extra_info: Optional[Dict[str, Any]] = None):
        elapsed = time.perf_counter() - self.started
        rss_after = self._rss_mb()
        timing = {
            "operation": self.operation,
            "elapsed_ms": round(elapsed * 1000, 2),
            "rss_mb": round(rss_after, 2),
            "rss_delta_mb": round(rss_after - self.rss_before, 2),
            "success": success,
        }
        if extra_info:
            timing.update(extra_info)

        level = logging.WARNING if elapsed > SLOW_OPERATION_SECONDS or not success else logging.INFO
        self.logger.log(level, f"{self.operation} 耗时 {timing['elapsed_ms']}ms", extra={"performance": timing})


@contextmanager
def performance_logger(logger: logging.Logger, operation: str):
    """统计 with 块耗时，异常时记录失败并继续抛出"""
    timer = OperationTimer(logger, operation)
    try:
        yield timer
    except Exception as e:
        timer.finish(success=False, extra_info={"error": str(e)})
        raise
    timer.finish(success=True)


class LogManager:
    """进程内共享的日志处理器，首次获取日志器时初始化"""

    _handlers = []
    _loggers = {}

    @classmethod
    def _file_handler(cls, filename: str, level: int, daily: bool = False, keep: int = None,
                      only=None) -> logging.Handler:
        log_config = settings.logging
        path = os.path.join(log_config.log_dir, filename)
        if daily:
            handler = TimedRotatingFileHandler(path, when="midnight", backupCount=keep or 30, encoding="utf-8")
        else:
            handler = RotatingFileHandler(
                path,
                maxBytes=log_config.max_file_size * 1024 * 1024,
                backupCount=keep or log_config.backup_count,
                encoding="utf-8"
            )
        handler.setLevel(level)
        handler.setFormatter(StructuredFormatter())
        if only is not None:
            handler.addFilter(only)
        return handler

    @classmethod
    def _setup(cls):
        log_config = settings.logging
        os.makedirs(log_config.log_dir, exist_ok=True)

        console = logging.StreamHandler(sys.stdout)
        console.setLevel(logging.getLevelName(log_config.console_level.upper()))
        console.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s [%(name)s] %(message)s"))

        cls._handlers = [
            console,
            cls._file_handler("fengzhui_app.log", logging.getLevelName(log_config.file_level.upper())),
            cls._file_handler("fengzhui_errors.log", logging.ERROR, keep=log_config.backup_count * 2),
            cls._file_handler("fengzhui_performance.log", logging.INFO, daily=True, only=_is_timing),
            cls._file_handler("fengzhui_finance.log", logging.INFO, daily=True, keep=90, only=_is_business_event),
        ]

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._handlers:
            cls._setup()

        logger = cls._loggers.get(name)
        if logger is None:
            logger = logging.getLogger(name)
            logger.setLevel(logging.DEBUG)
            if not logger.handlers:
                for handler in cls._handlers:
                    logger.addHandler(handler)
                logger.propagate = False
            cls._loggers[name] = logger
        return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """获取日志器，名称统一加 fengzhui. 前缀"""
    name = name or "app"
    if not name.startswith("fengzhui."):
        name = f"fengzhui.{name}"
    return LogManager.get_logger(name)


def log_business_event(logger: logging.Logger, event: str, **fields):
    """记录业务事件（状态迁移、资金变动），字段写入结构化日志"""
    logger.info(event, extra={"extra_fields": {"event": event, **fields}})

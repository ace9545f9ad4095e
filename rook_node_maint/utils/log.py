"""
日志配置

- text: 通过 rich 的 RichHandler 输出到 stderr
- json: 每行一个 JSON 对象, 便于采集
- file: 非空时写入文件而不是 stderr
"""

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "error": "ERROR",
}

PACKAGE_LOGGER = "rook_node_maint"


class JsonFormatter(logging.Formatter):
    """单行 JSON 日志格式"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def build_logging_config(level: str = "info", fmt: str = "text",
                         file: Optional[str] = None) -> Dict[str, Any]:
    """构建 dictConfig 配置

    Args:
        level: debug / info / warn / error
        fmt: text / json
        file: 日志文件路径 (为空则输出到 stderr)
    """
    log_level = LOG_LEVELS.get(level, "INFO")

    if file:
        handler: Dict[str, Any] = {
            "class": "logging.FileHandler",
            "filename": file,
            "encoding": "utf-8",
            "formatter": fmt,
        }
    elif fmt == "json":
        handler = {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "json",
        }
    else:
        handler = {
            "class": "rich.logging.RichHandler",
            "rich_tracebacks": True,
            "show_path": False,
            "formatter": "rich",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "text": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
            "rich": {"format": "%(message)s", "datefmt": "[%X]"},
            "json": {"()": JsonFormatter},
        },
        "handlers": {"default": handler},
        "loggers": {
            PACKAGE_LOGGER: {
                "handlers": ["default"],
                "level": log_level,
                "propagate": False,
            },
        },
    }


def setup_logging(level: str = "info", fmt: str = "text", file: Optional[str] = None):
    """初始化包级日志"""
    logging.config.dictConfig(build_logging_config(level, fmt, file))

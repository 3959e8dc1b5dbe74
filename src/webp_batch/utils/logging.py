"""日志配置。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """初始化项目日志配置。

    指定 ``log_file`` 时额外写入 DEBUG 级别的详细日志文件。
    """

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    handlers[0].setLevel(level)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if log_file is not None else level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

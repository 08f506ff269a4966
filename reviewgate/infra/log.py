from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

_configured = False


def configure_logging(level: str) -> None:
    """
    配置 root logger（只配置一次）。

    日志走 stderr：stdout 只留给报告本身，方便管道处理 JSON。
    """
    global _configured
    if _configured:
        logging.getLogger().setLevel(getattr(logging, level.upper(), logging.WARNING))
        return
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING), format=LOG_FORMAT)
    _configured = True

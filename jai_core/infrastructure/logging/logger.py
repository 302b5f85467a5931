"""客户端结构化日志。

每条记录写成一行 JSON（{log_dir}/client.log），字段为 ts / level / name / msg，
调用方通过 extra={"extra": {...}} 附加的字段平铺到同一行。
log_redact_content 打开时 msg 截断到 64 个字符，避免把聊天内容写进日志。
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from jai_core.config.settings import settings


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("jai_core")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "client.log", encoding="utf-8")
    fh.setLevel(logging.INFO)

    class JsonFormatter(logging.Formatter):
        def format(self, record: logging.LogRecord) -> str:
            msg = record.getMessage()
            if settings.log_redact_content:
                msg = (msg or "")[:64]
            payload = {
                "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "name": record.name,
                "msg": msg,
            }
            extra = getattr(record, "extra", None)
            if isinstance(extra, dict):
                payload.update(extra)
            return json.dumps(payload, ensure_ascii=False, default=str)

    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


logger = setup_logger()

"""
Logging setup. Payment code tags its lines by stage ([WEBHOOK], [ZOHO],
[EMAIL], [TAX]) so one grep follows a payment through the pipeline.
"""
import logging
import sys
from pathlib import Path

from allgood.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

NOISY_LOGGERS = ("sqlalchemy.engine", "stripe", "urllib3", "arq.jobs")


def setup_logging() -> None:
    root = logging.getLogger()
    if getattr(root, "_allgood_configured", False):
        return

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "allgood.log", encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )

    logging.getLogger("uvicorn.access").disabled = True
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root._allgood_configured = True

"""Logging setup and pipeline run context."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

from pricecompare.config import settings


class PipelineJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with a UTC timestamp, level and logger; run context fields pass through as extras."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.utcnow().isoformat() + "Z"
        log_record["level"] = record.levelname
        log_record["logger"] = record.name


def setup_logging(base_dir: str | Path | None = None, log_level: str | None = None) -> logging.Logger:
    """
    Configure the root logger: plain console output plus JSON files under
    `<base_dir>/logs` (`app.log` for everything, `error.log` for errors).
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel((log_level or settings.log_level).upper())
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    root_logger.addHandler(console_handler)

    json_formatter = PipelineJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    for filename, level in (("app.log", logging.DEBUG), ("error.log", logging.ERROR)):
        handler = logging.FileHandler(logs_dir / filename)
        handler.setLevel(level)
        handler.setFormatter(json_formatter)
        root_logger.addHandler(handler)

    # APScheduler logs every job submission at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return root_logger


class RunLogAdapter(logging.LoggerAdapter):
    """
    Tags records with the pipeline run they belong to.

    Messages are prefixed with `[run 12 scheduled/deals]` and the context
    (`run_id`, `run_type`, `task`) is attached to each record for the JSON log.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return f"{self.prefix} {msg}", kwargs

    @property
    def prefix(self) -> str:
        label = f"run {self.extra['run_id']}"
        if self.extra.get("run_type"):
            label += f" {self.extra['run_type']}"
        if self.extra.get("task"):
            label += f"/{self.extra['task']}"
        return f"[{label}]"

    def bind(self, **context: Any) -> "RunLogAdapter":
        """A child adapter with extra context, e.g. `bind(task="deals")`."""
        return RunLogAdapter(self.logger, {**self.extra, **context})


def get_run_logger(
    name: str,
    run_id: int,
    run_type: Optional[str] = None,
    task: Optional[str] = None,
) -> RunLogAdapter:
    context = {"run_id": run_id, "run_type": run_type, "task": task}
    return RunLogAdapter(logging.getLogger(name), {k: v for k, v in context.items() if v is not None})

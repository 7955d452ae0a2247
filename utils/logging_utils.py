import logging
import sys
from typing import Any, List

import orjson
import structlog
from structlog.stdlib import add_log_level, add_logger_name


def _orjson_dumps(obj: Any, **kwargs: Any) -> str:
    return orjson.dumps(obj, default=str).decode("utf-8")


def setup_logging(level: int = logging.INFO, json_logs: bool = False) -> None:
    """Configure structlog and standard logging with the given level.

    Logs go to stderr; stdout is reserved for the CLI's JSON results.  With
    ``json_logs`` every event is rendered as one JSON object per line, which
    suits long simulation batches piped into other tools.
    """
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        add_logger_name,
        add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=json_logs),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(serializer=_orjson_dumps),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

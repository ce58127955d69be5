"""
Structured logging configuration.

Called once from create_app() and from the RQ worker entry. LOG_FORMAT picks
text or JSON output, LOG_LEVEL the level (INFO by default).

Scan steps run inside scan_context(run_id=..., step=...); every record logged
there carries the run id and step, so one scan's lines can be pulled out of a
shared worker log.
"""
import contextvars
import json
import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone

_scan_context = contextvars.ContextVar('scan_context', default={})

TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s [%(run_id)s %(step)s] %(message)s'

# Vendor SDKs log every request at INFO
_NOISY_LOGGERS = [
    'urllib3',
    'openai',
    'anthropic',
    'httpcore',
    'httpx',
    'google_genai',
    'rq.worker',
]


@contextmanager
def scan_context(**fields):
    """Attach run_id / step to every record logged inside the block."""
    token = _scan_context.set({**_scan_context.get(), **fields})
    try:
        yield
    finally:
        _scan_context.reset(token)


def current_scan_context() -> dict:
    return dict(_scan_context.get())


class ScanContextFilter(logging.Filter):
    """Copies the active scan context onto the record ('-' outside a scan)."""

    def filter(self, record):
        ctx = _scan_context.get()
        record.run_id = ctx.get('run_id') or '-'
        record.step = ctx.get('step') or '-'
        return True


class JSONFormatter(logging.Formatter):
    """Single-line JSON records for log aggregators."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key in ('run_id', 'step'):
            value = getattr(record, key, None)
            if value and value != '-':
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(app=None):
    """Install one stderr handler on the root logger; safe to call repeatedly."""
    level = getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)
    json_output = os.getenv('LOG_FORMAT', 'text').lower() == 'json'

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(ScanContextFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.setLevel(level)

"""
RQ worker entry point — runs queued scans.

    python worker.py
"""
from rq import Worker

from app.extensions import rq_connection
from app.logging_config import configure_logging


if __name__ == '__main__':
    configure_logging()
    Worker(['default'], connection=rq_connection).work()

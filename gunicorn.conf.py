"""
Gunicorn config. Use with: gunicorn -c gunicorn.conf.py app:app

The when_ready hook starts the scheduler (order snapshot refresh every
REFRESH_INTERVAL_MINUTES). Without this, the scheduler never runs under gunicorn.
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
worker_class = "sync"
timeout = 120
preload = True  # Load app in master so scheduler runs in one process only


def when_ready(server):
    """Start the order refresh scheduler in the master process."""
    from app import _bootstrap
    _bootstrap()

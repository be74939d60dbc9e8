"""Gunicorn configuration for the lesson agent service.

Usage:
    gunicorn main:app -c deploy/gunicorn.conf.py

Learning sessions and the in-memory stores live in worker memory.  Run a
single worker unless conversations, resumable streams and the course store
are backed by Redis / the course service.
"""

import multiprocessing
import os

# ─── Server socket ──────────────────────────────────────────────

bind = os.getenv("BIND", "0.0.0.0:5000")
backlog = 2048

# ─── Worker processes ───────────────────────────────────────────

workers = int(os.getenv("WORKERS", min(multiprocessing.cpu_count(), 4)))
worker_class = "uvicorn.workers.UvicornWorker"

# ─── Timeouts ───────────────────────────────────────────────────
#
# Lesson turns: 2-20s, quiz battery: up to 60s, SSE streams stay open
# while the model writes and while course views listen for events.

timeout = 120
graceful_timeout = 60   # let in-flight streams finish and persist
keepalive = 120

# ─── Worker recycling ──────────────────────────────────────────

max_requests = 3000
max_requests_jitter = 500

# ─── Logging ────────────────────────────────────────────────────

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
access_log_format = (
    '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" %(D)sμs'
)

# ─── Process naming ─────────────────────────────────────────────

proc_name = "lesson-agent"

# ─── Server hooks ───────────────────────────────────────────────


def on_starting(server):
    server.log.info(
        "Starting lesson agent: workers=%d, timeout=%ds, bind=%s",
        workers,
        timeout,
        bind,
    )


def worker_exit(server, worker):
    server.log.info("Worker exit (pid: %s)", worker.pid)

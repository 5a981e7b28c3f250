"""
Gunicorn configuration for the Sage engine API server.

Single-instance container deployment. Env vars that override defaults:
  PORT       TCP port to bind (injected by the platform)
  WORKERS    number of worker processes (default: 2)
  TIMEOUT    worker timeout in seconds (default: 360)
  LOG_LEVEL  shared with the app settings (default: INFO)

The nightly learning job normally runs from cron via
`python -m app.jobs.nightly_learning`, not inside these workers; the
job lock keeps a manual POST /learning/run from overlapping with it.
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Policy reads and proposal reviews are short DB round-trips; two workers
# fit a 512 MB container.
workers = int(os.environ.get("WORKERS", "2"))
worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

# POST /learning/run may hold a worker for up to LEARNING_TIME_BUDGET_SECONDS
# (300 s by default).
timeout = int(os.environ.get("TIMEOUT", "360"))
graceful_timeout = 30

# stdout only, same stream as app.core.logging.
loglevel = os.environ.get("LOG_LEVEL", "INFO").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

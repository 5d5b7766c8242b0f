"""
Production Server Configuration

Run the back-office API with Uvicorn workers under Gunicorn.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes; the rate limiter is per worker
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
timeout = 60
keepalive = 5
graceful_timeout = 30

# Process naming
proc_name = "jewellery-backoffice-api"

# Server mechanics
daemon = False
pidfile = os.getenv("PIDFILE", "/tmp/backoffice-gunicorn.pid")

# Logging; application logs are structured by structlog, these cover gunicorn itself
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)s "%({x-request-id}o)s"'


def post_fork(server, worker):
    """Called after a worker has been forked."""
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def worker_int(worker):
    """Called when worker receives INT or QUIT signal."""
    worker.log.info("Worker received INT or QUIT signal")

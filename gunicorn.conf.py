"""Gunicorn configuration file."""

import os

# Server socket
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")

# Every worker runs its own scheduler and sync executor; the orchestrator's
# durable active-run check keeps them from syncing concurrently, but one
# worker with threads is the intended deployment
workers = int(os.getenv("GUNICORN_WORKERS", "1"))
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", "4"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

# Logging goes through the application's own dictConfig
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")

forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "127.0.0.1,::1")

# The scheduler must start after fork, inside each worker
preload_app = False

def on_starting(server):
    server.log.info("feedsync server is starting")

def worker_exit(server, worker):
    """Stop background sync work with the worker."""
    from feedsync.tasks.executor import shutdown
    shutdown(wait=False)
    server.log.info(f"Worker {worker.pid} exited")

# Gunicorn configuration for the portfolio analytics service
# Rate-limit counters and realtime subscribers live in process memory, so a
# single worker with several threads keeps them shared.

import os

bind = f"0.0.0.0:{os.environ.get('PORT', 5000)}"

# Worker configuration
workers = int(os.environ.get("WORKERS", 1))
worker_class = "gthread"
threads = int(os.environ.get("THREADS", 8))

# SSE connections stay open; keep the worker timeout above the keepalive interval
timeout = 120
graceful_timeout = 30
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"

proc_name = "portfolio-analytics"

# Sweeper threads start in create_app and must run in the worker, not the master
preload_app = False

# backend/gunicorn_conf.py

# Gunicorn config file: gunicorn -c gunicorn_conf.py engagehub.main:app

import os

bind = os.getenv("BIND", "0.0.0.0:8000")
workers = int(os.getenv("WORKERS", "2"))
worker_class = "uvicorn.workers.UvicornWorker"

# The tracking WebSocket keeps connections open; don't recycle them on a short timer
timeout = 120
graceful_timeout = 30
keepalive = 5

# Settings for running behind a reverse proxy like Nginx
forwarded_allow_ips = "*"

# --- Logging ---
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")

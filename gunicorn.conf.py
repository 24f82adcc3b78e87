# gunicorn.conf.py
import os
import logging
import sys

# Configure logging to stdout
accesslog = '-'
errorlog = '-'
loglevel = 'info'

# Get PORT from environment or use default
port = os.getenv('PORT', '8080')
bind = f"0.0.0.0:{port}"

# The store lock and the background sync pool live in the process,
# so a single worker owns the device store; threads serve concurrent requests
workers = 1
threads = int(os.getenv('GUNICORN_THREADS', 4))

# Log configuration on startup
def on_starting(server):
    logger = logging.getLogger('gunicorn.error')
    logger.setLevel(logging.INFO)
    logger.addHandler(logging.StreamHandler(sys.stdout))
    logger.info(f"Starting gunicorn with {workers} worker and {threads} threads on port {port}")
    logger.info(f"Worker timeout set to {timeout} seconds")

timeout = 60
keepalive = 120  # Keep connections alive for 2 minutes
worker_class = "gthread"

# Process naming
proc_name = "personal_sync"
default_proc_name = "personal_sync"

# Graceful server restart
graceful_timeout = 30  # Give the sync pool time to flush pending pushes

wsgi_app = "app:create_app()"

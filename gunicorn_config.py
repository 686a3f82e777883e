"""Gunicorn configuration file."""
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '8787')}"
backlog = 2048

# Worker processes
workers = int(os.getenv('WEB_CONCURRENCY', 2))
worker_class = "gthread"
threads = int(os.getenv('GUNICORN_THREADS', 4))
timeout = 330  # must exceed GENERATOR_TIMEOUT
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'

# Process naming
proc_name = "dreamina-api"

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

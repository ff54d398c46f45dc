"""
Gunicorn configuration.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Worker configuration
# One worker keeps the per-customer in-process locks and the scheduler in a single process
workers = int(os.getenv('GUNICORN_WORKERS', '1'))
threads = int(os.getenv('GUNICORN_THREADS', '4'))
worker_class = 'gthread'
timeout = 120  # Long enough for a page of order imports
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'rewardspro'

preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting RewardsPro server...")


def on_exit(server):
    print("[Gunicorn] RewardsPro server shutting down...")

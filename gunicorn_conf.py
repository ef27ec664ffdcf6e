import multiprocessing
import os

# gunicorn -c gunicorn_conf.py taskhub.main:app
wsgi_app = "taskhub.main:app"

bind = os.getenv("BIND", "0.0.0.0:8000")

# (2 x num_cores) + 1, capped so small hosts do not run out of DB connections
workers = int(os.getenv("WEB_CONCURRENCY", min(multiprocessing.cpu_count() * 2 + 1, 9)))
worker_class = "uvicorn.workers.UvicornWorker"

timeout = 60
graceful_timeout = 30
keepalive = 5

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()

proc_name = "taskhub_api"

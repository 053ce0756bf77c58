import multiprocessing
import os

# Gunicorn production configuration: `gunicorn -c gunicorn_config.py wsgi:app`
bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:8000')

# A café till sees light traffic; cap workers on big hosts
workers = int(os.environ.get('WEB_CONCURRENCY', min(multiprocessing.cpu_count() * 2 + 1, 5)))
threads = 2
worker_class = 'gthread'

timeout = 60
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

accesslog = '-'
errorlog = '-'
loglevel = os.environ.get('LOG_LEVEL', 'info')
capture_output = True

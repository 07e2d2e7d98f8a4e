import os

# App
wsgi_app = "app:create_app()"

# Bind / workers / threads
bind = os.getenv("BIND", "0.0.0.0:10000")
# Tab sessions and the token cache live in process memory: one worker only.
# The durable tier (file / redis) is what several processes could share.
workers = 1
threads = int(os.getenv("WEB_THREADS", "4"))

# Worker class & timeouts
worker_class = "gthread"
timeout = int(os.getenv("WEB_TIMEOUT", "30"))
graceful_timeout = int(os.getenv("WEB_GRACEFUL_TIMEOUT", "10"))
keepalive = int(os.getenv("WEB_KEEPALIVE", "5"))

# Logging
loglevel = os.getenv("LOG_LEVEL", "info")
accesslog = "-"   # stdout
errorlog = "-"    # stderr
capture_output = True

# Proxy
forwarded_allow_ips = "*"

def when_ready(server):
    server.log.info("Checkout state server ready")

def worker_int(worker):
    worker.log.info("Worker received INT or QUIT signal; pending reset timers are dropped")

"""Gunicorn 生产配置

用法:
  gunicorn --config deploy/gunicorn.conf.py dnpmanager.web.app:app

全局变量传播在进程内后台线程执行，包锁也只在进程内有效，
因此固定为单 worker 多线程。
"""

import os

# ---------- 网络 ----------
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8888")

# ---------- 并发 ----------
workers = 1
threads = int(os.getenv("GUNICORN_THREADS", "4"))
worker_class = "gthread"
timeout = 120

# ---------- 日志 ----------
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

# ---------- 进程管理 ----------
graceful_timeout = 30
keepalive = 5

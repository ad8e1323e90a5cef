"""
Конфигурация Gunicorn для production.

Запуск: gunicorn zhiku.app.main:app -c gunicorn_config.py

Периодическое обслуживание стартует в каждом воркере; при нескольких
воркерах задайте MAINTENANCE_INTERVAL_MINUTES=0 и вызывайте
/api/cron/settle-commissions по расписанию.
"""

import multiprocessing
import os
from pathlib import Path

# Количество воркеров
workers = int(os.getenv("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1))

# Класс воркера (для async приложений)
worker_class = "uvicorn.workers.UvicornWorker"

bind = os.getenv("GUNICORN_BIND", "127.0.0.1:8000")

# Логи
log_dir = Path(__file__).parent / "logs"
log_dir.mkdir(exist_ok=True)

accesslog = str(log_dir / "access.log")
errorlog = str(log_dir / "error.log")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

timeout = 120
keepalive = 5

# Перезапуск воркеров
max_requests = 1000
max_requests_jitter = 50

capture_output = True

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

from core.config import get_settings

settings = get_settings()

formatter = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

root_logger = logging.getLogger()
root_logger.setLevel(settings.log_level.upper())

console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)
root_logger.addHandler(console_handler)

# Пустой LOG_DIR отключает запись в файл (например, в тестах)
if settings.log_dir:
    os.makedirs(settings.log_dir, exist_ok=True)
    current_date = datetime.now().strftime('%Y-%m-%d')

    file_handler = RotatingFileHandler(
        os.path.join(settings.log_dir, f'app_{current_date}.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

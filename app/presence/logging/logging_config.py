import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from ..config.config import settings


def setup_logging(log_dir: Optional[str] = None, level: int = logging.INFO):
    """
    Uygulama genelinde kullanılacak olan merkezi loglama yapılandırmasını kurar.

    Loglar hem konsola hem de belirli bir boyuta ulaştığında otomatik olarak
    dönen bir dosyaya yazılır. Docker volume ile `LOG_DIR` klasörü sunucudaki
    kalıcı bir dizine bağlanabilir.
    """
    # Zaman - Modül Adı - Seviye - Mesaj
    log_format = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

    target_dir = Path(log_dir or settings.LOG_DIR)
    target_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(level)

    # Uvicorn gibi kütüphanelerin varsayılan handler'larını temizleyerek
    # kendi standart formatımızı zorunlu kılıyoruz.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(stdout_handler)

    # 5MB'ı geçen dosyalar presence.log.1, presence.log.2 ... olarak saklanır.
    file_handler = RotatingFileHandler(
        target_dir / "presence.log",
        maxBytes=5*1024*1024,  # 5 MB
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)
    return logger

import logging
from typing import Optional

DEFAULT_LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """返回本包使用的 logger。

    仅在根 logger 尚未配置 handler 时调用 basicConfig，
    不覆盖调用方（模拟驱动）已有的日志配置。
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(level=DEFAULT_LOG_LEVEL, format=LOG_FORMAT)
    return logging.getLogger(name if name else "langevin_gf")

import gzip
import logging
import logging.handlers
import os
from typing import Dict, Optional

#: Per-package log levels applied unless the ``logging.tags`` config overrides them.
DEFAULT_PACKAGE_LEVELS = {
    "aiohttp": "WARNING",
    "asyncio": "INFO",
}

FILE_FORMAT = '[%(asctime)s] (%(levelname)s) %(name)s: %(message)s [in %(pathname)s:%(lineno)d]'
CONSOLE_FORMAT = '[%(asctime)s] (%(levelname)s) %(name)s: %(message)s'


class LoggingInfo:
    """ What :func:`setup_logging` configured, for inspection after the fact. """
    def __init__(self):
        self.is_setup = False
        self.cfg_level = logging.INFO
        self.cfg_packages = {}  # type: Dict[str, str]
        self.file_handler = None  # type: Optional[logging.FileHandler]
        self.console_handler = None  # type: Optional[logging.StreamHandler]


_logging_info = LoggingInfo()


def setup_logging(logger, config, *, debug=False, console=True):
    """
    Configure logging from the ``logging`` section of the config file.

    :param logger: Logger to attach handlers to; normally the root logger.
    :param config: The config file.
    :param debug: Log everything at DEBUG level, to file and console.
    :param console: Also log to the console (stderr). Always on in debug mode.
    """
    from chatfilter.config import log_level
    global _logging_info
    info = LoggingInfo()

    if not debug:
        info.cfg_level = config.get("logging", "level", converter=log_level)
        console_level = max(info.cfg_level, logging.INFO)  # console never above INFO
    else:
        info.cfg_level = console_level = logging.DEBUG
    logger.setLevel(info.cfg_level)

    info.cfg_packages = dict(DEFAULT_PACKAGE_LEVELS)
    info.cfg_packages.update(config.get("logging", "tags", {}))
    for name, s_value in info.cfg_packages.items():
        logging.getLogger(name).setLevel(max(log_level(s_value), info.cfg_level))

    info.file_handler = _file_handler(config)
    logger.addHandler(info.file_handler)

    if console or debug:
        info.console_handler = logging.StreamHandler()
        info.console_handler.setLevel(console_level)
        info.console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(info.console_handler)

    info.is_setup = True
    _logging_info = info


def _file_handler(config) -> logging.handlers.RotatingFileHandler:
    fh = logging.handlers.RotatingFileHandler(
        config.resolve_path(config.get("logging", "file")),
        maxBytes=config.get("logging", "max_size_kb")*1024,
        backupCount=config.get("logging", "max_backups"),
        encoding='utf-8'
    )
    if config.get("logging", "gzip_backups"):
        fh.namer = gzip_namer
        fh.rotator = gzip_rotator
    fh.setFormatter(logging.Formatter(FILE_FORMAT))
    return fh


def get_logging_info() -> LoggingInfo:
    return _logging_info


def gzip_rotator(source, dest):
    with open(source, "rb") as sf:
        with gzip.open(dest, 'wb') as df:
            df.writelines(sf)
    os.remove(source)


def gzip_namer(name):
    return name + '.gz'

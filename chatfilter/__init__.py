# chatfilter
from .filter.settings import filter_defaults

__release__ = "1.0"  # release stream, usually major.minor only
__version__ = "1.0.0"

cfg_defaults = {
    "core": {
        "filters_dir": "filters"
    },
    "filter": dict(filter_defaults),
    "logging": {
        "level": "INFO",
        "file": "chatfilter.log",
        "max_size_kb": 0,
        "max_backups": 0,
        "gzip_backups": True,
        "tags": {
            "aiohttp": "WARNING",
            "asyncio": "INFO"
        }
    }
}

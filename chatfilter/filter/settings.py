import logging
from typing import Callable, List, Any

from chatfilter.config import ChatFilterConfig, SectionView

logger = logging.getLogger(__name__)

SettingListener = Callable[[str, Any], None]

filter_defaults = {
    "enabled": True,
    "remote_url": "https://2b2t.info/adblock_2b2t/filter.txt",
    "use_remote_filters": True,
    "use_custom_filters": True,
    "debug_mode": False,
    "auto_refresh_enabled": True,
    "auto_refresh_delay": 5,
    "strict_patterns": False
}

#: Older config files called the custom list the "local" list.
legacy_keys = {
    "use_local_filters": "use_custom_filters"
}


def clamp_delay(value) -> int:
    """ Auto-refresh delay in minutes: an integer, at least 1. """
    return max(1, int(value))


class FilterSettings(SectionView):
    """
    The ``filter`` section of the config file. Every change is written to file immediately and
    then reported to the registered listeners, so running components can follow setting changes
    without a restart.

    :param config: The config file. Must not be read-only if settings will be changed.
    :param section: Section name.
    """
    enabled: bool
    remote_url: str
    use_remote_filters: bool
    use_custom_filters: bool
    debug_mode: bool
    auto_refresh_enabled: bool
    auto_refresh_delay: int
    strict_patterns: bool

    def __init__(self, config: ChatFilterConfig, section='filter'):
        super().__init__(config, section)
        self._listeners = []  # type: List[SettingListener]
        self.set_defaults(**self._migrate_legacy_keys(dict(filter_defaults)))
        self.set_converters('auto_refresh_delay', clamp_delay, clamp_delay)

    def _migrate_legacy_keys(self, defaults: dict) -> dict:
        keys = self.keys()
        for old_key, new_key in legacy_keys.items():
            if old_key in keys and new_key not in keys:
                value = self.config.get(self.section, old_key)
                logger.info("Migrating setting {!r} to {!r}".format(old_key, new_key))
                defaults[new_key] = value
        return defaults

    def add_listener(self, listener: SettingListener):
        """
        Register a callable ``listener(key, value)`` called after a setting is changed and saved.
        """
        self._listeners.append(listener)

    def remove_listener(self, listener: SettingListener):
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def set(self, key: str, value):
        super().set(key, value)
        self.write()
        value = self.get(key)
        logger.info("Setting changed: {} = {!r}".format(key, value))
        for listener in list(self._listeners):
            # noinspection PyBroadException
            try:
                listener(key, value)
            except Exception:
                logger.exception("Error in settings listener {!r} for {}".format(listener, key))

    def snapshot(self) -> dict:
        """ Current value of every filter setting. """
        return {key: self.get(key) for key in filter_defaults}

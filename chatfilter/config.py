import copy
import errno
import json
import logging
import os
from collections import OrderedDict
from typing import Dict, Tuple, Callable, Any

from chatfilter.driver.atomic_write import atomic_write

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    def __init__(self, file, section, key, *args):
        super().__init__(file, section, key, *args)
        self.file = file
        self.section = section
        self.key = key

    def __str__(self):
        return "Error in configuration {}".format(self._get_config_info())

    def _get_config_info(self):
        s = [str(self.file)]
        if self.section:
            s.append(self.section)
        if self.key:
            s.append(self.key)
        return ':'.join(s)


class ReadOnlyError(ConfigError):
    def __init__(self, file, *args):
        super().__init__(file, None, None, *args)

    def __str__(self):
        return "Configuration file {} is open read-only".format(self.file)


class ConfigNameError(ConfigError):
    def __str__(self):
        return "Config names cannot start with '_' in {}".format(self._get_config_info())


class ConfigKeyError(ConfigError, AttributeError, KeyError):
    def __str__(self):
        return "Configuration key not found: {}".format(self._get_config_info())


class ConfigConverterError(ConfigError):
    def __str__(self):
        return "Error in converter for configuration: {}".format(self._get_config_info())


class ChatFilterConfig:
    """
    JSON-backed configuration file, organised in sections of key/value pairs:

    .. code-block:: json
        {
            "filter": {
                "enabled": true,
                "remote_url": "https://example.org/filter.txt"
            },
            "logging": {
                "level": "INFO"
            }
        }

    Sections can be accessed as attributes (``config.logging``), which returns a
    :class:`SectionView`.

    If the file does not exist, it is created (unless the config is read-only). Defaults passed at
    construction are merged in for any keys missing from the file, and written back.

    :param filename: Path of the config file.
    :param defaults: A dict of the same structure as the JSON file, containing default values.
    :param read_only: If True, :meth:`write` and :meth:`set` raise :class:`ReadOnlyError`, and
        defaults are kept in memory only.
    """
    def __init__(self, filename="config.json", defaults=None, read_only=False):
        if defaults is None:
            defaults = {}
        self.filename = filename
        self._data = OrderedDict()
        self._defaults = {}
        self._read_only = read_only
        self.is_dirty = False
        self.read()
        for section, s_data in defaults.items():
            self.set_defaults(section, **s_data)

    @property
    def read_only(self):
        return self._read_only

    @property
    def directory(self) -> str:
        """ Directory containing the config file. Relative paths in the config resolve here. """
        return os.path.dirname(os.path.abspath(self.filename))

    def resolve_path(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.directory, path)

    def read(self):
        """
        Read the config file and replace all values stored in the object.
        :raises OSError: Error opening file.
        :raises json.JSONDecodeError: Malformed file
        :raises ConfigNameError: Invalid section or key name in file
        """
        logger.info("config({}) Reading file...".format(self.filename))
        self._data = OrderedDict()
        try:
            with open(self.filename, encoding='utf-8') as cfg_file:
                read_data = json.load(cfg_file, object_pairs_hook=OrderedDict)
        except OSError as e:
            if e.errno == errno.ENOENT and not self._read_only:
                logger.info("config({}) File not found: creating".format(self.filename))
                self.is_dirty = True
                self.write()
            else:
                raise
        else:
            self._data.update(read_data)
            self.is_dirty = False

        for section, sdata in self._data.items():
            if section.startswith('_'):
                raise ConfigNameError(self.filename, section, None)
            for key in sdata.keys():
                if key.startswith('_'):
                    raise ConfigNameError(self.filename, section, key)

    def write(self, log=True):
        """
        Write the current config data to file, if anything changed since the last read/write.
        :raises OSError: Error opening or writing file.
        :raise ReadOnlyError: configuration is set as read-only
        """
        if self._read_only:
            raise ReadOnlyError(self.filename)

        if self.is_dirty:
            if log:
                logger.info("config({}) Writing file...".format(self.filename))
            directory = self.directory
            if not os.path.isdir(directory):
                os.makedirs(directory, exist_ok=True)
            with atomic_write(self.filename) as cfg_file:
                json.dump(self._data, cfg_file, indent=2)
            self.is_dirty = False

    def __getattr__(self, item):
        if item.startswith('_'):
            raise AttributeError(item)
        return self.get_section(item)

    def get_section(self, section: str) -> 'SectionView':
        """
        Retrieve a view on a configuration section. Changes made through the view are reflected in
        this object.

        :raises ConfigKeyError: section doesn't exist in a read-only config
        """
        logger.debug("config:get_section: file={!r} section={!r}".format(self.filename, section))

        if self.read_only and section not in self._data:
            raise ConfigKeyError(self.filename, section, None)

        return SectionView(self, section)

    def get_section_data(self, section: str) -> dict:
        """
        Retrieve the raw section data. This is a live dict: do not modify it directly.

        :raises ConfigKeyError: section doesn't exist
        """
        try:
            return self._data[section]
        except KeyError as e:
            raise ConfigKeyError(self.filename, section, None) from e

    def get(self, section: str, key: str, default=None, converter=None):
        """
        Retrieve a configuration value. Collections are returned as-is, not copied.

        Lookup order: the file data, then defaults set via construction or
        :meth:`set_defaults`, then the ``default`` parameter.

        :param section: Section of the config file to retrieve from.
        :param key: Key to obtain.
        :param default: Value to return if the section/key is not found. If this is None, a
            :class:`ConfigKeyError` is raised instead.
        :param converter: Callable applied to the retrieved value.

        :raises ConfigKeyError: Section/key not found and no default
        :raises ConfigConverterError: converter raised
        :raises TypeError: Section is not a dict
        """
        logger.debug("config:get: file={!r} section={!r} key={!r}"
            .format(self.filename, section, key))

        try:
            value = self._data[section][key]
        except KeyError as e:
            default = self._get_default(section, key, default)
            if default is not None:
                value = default
            else:
                raise ConfigKeyError(self.filename, section, key) from e
        except TypeError:
            raise TypeError("config({}) Unexpected configuration file structure"
                .format(self.filename))

        if converter is not None and callable(converter):
            try:
                value = converter(value)
            except Exception as e:
                raise ConfigConverterError(self.filename, section, key) from e
        return value

    def _get_default(self, section: str, key: str, default):
        try:
            return self._defaults[section][key]
        except KeyError:
            return default

    def set(self, section: str, key: str, value):
        """
        Set a configuration value in memory. Values must be JSON-serialisable; a deep copy is
        stored. Call :meth:`write` to save.

        :raise ReadOnlyError: configuration is set as read-only
        """
        if self._read_only:
            raise ReadOnlyError(self.filename)
        logger.debug("config:set: file={!r} section={!r} key={!r}"
            .format(self.filename, section, key))

        try:
            section_data = self._data[section]
        except KeyError:
            logger.debug("Section {!r} not found: creating new section".format(section))
            section_data = self._data[section] = OrderedDict()

        section_data[key] = copy.deepcopy(value)
        self.is_dirty = True

    def set_defaults(self, section: str, **kwargs):
        """
        Set values for any keys not already defined. On a writable config, the values are stored
        and the file written; on a read-only config, they are only kept in memory.

        :raises OSError: Error writing file.
        """
        if not self.read_only:
            for key, value in kwargs.items():
                try:
                    self.get(section, key)
                except KeyError:
                    self.set(section, key, value)
            self.write()
        else:
            if section not in self._defaults:
                self._defaults[section] = {}
            self._defaults[section].update(kwargs)

    def __str__(self):
        return '{!s}{}'.format(self.filename, '[ro]' if self.read_only else '')

    def __repr__(self):
        return 'ChatFilterConfig<{!s}>'.format(self)


class SectionView:
    """
    Dynamic view on one configuration section. Keys can be read as attributes (``view.key``) or
    via :meth:`get`, and written by attribute assignment or :meth:`set`.

    :meth:`set_converters` installs a pair of converters for a key: one applied when reading from
    the file data, one applied when writing. Converted values are cached until the key is set.

    Assigning an attribute only detects changes to that attribute itself: mutating a list or dict
    in place is not noticed.
    """
    def __init__(self, config: ChatFilterConfig, section: str):
        self.__config = config
        self.__section = section
        self.__converters = {}  # type: Dict[str, Tuple[Callable[[Any], Any], Callable[[Any], Any]]]
        self.__cache = {}  # type: Dict[str, Any]

    @property
    def config(self) -> ChatFilterConfig:
        return self.__config

    @property
    def section(self) -> str:
        return self.__section

    def set_converters(self, key: str, get_converter, set_converter):
        """
        Set the converters used for a key in this view.

        * ``def get_converter(json_value) -> output_value``
        * ``def set_converter(any_value) -> json_serializable_value``
        """
        if get_converter is not None and not callable(get_converter):
            raise ValueError("Get converter must be callable")
        if set_converter is not None and not callable(set_converter):
            raise ValueError("Set converter must be callable")
        self.__cache.pop(key, None)
        self.__converters[key] = (get_converter, set_converter)

    def set_defaults(self, **kwargs):
        """ See :meth:`ChatFilterConfig.set_defaults`. """
        return self.__config.set_defaults(self.__section, **kwargs)

    def __getattr__(self, item):
        if item.startswith('_'):
            raise AttributeError(item)
        return self.get(item)

    def __setattr__(self, key: str, value):
        if not key.startswith('_'):
            self.set(key, value)
        else:
            self.__dict__[key] = value

    def get(self, key: str, default=None):
        """
        Read a configuration value. See :meth:`ChatFilterConfig.get`.
        :raises ConfigKeyError: Key doesn't exist
        :raises ConfigConverterError: The get converter raised
        """
        converter = self.__converters.get(key, (None, None))[0]
        if key in self.__cache:
            return self.__cache[key]
        value = self.__config.get(self.__section, key, default=default, converter=converter)
        if converter is not None:
            self.__cache[key] = value
        return value

    def set(self, key: str, value):
        """
        Write a configuration value in memory. See :meth:`ChatFilterConfig.set`.
        :raises ConfigConverterError: The set converter raised
        """
        converter = self.__converters.get(key, (None, None))[1]
        self.__cache.pop(key, None)
        if converter is not None:
            try:
                value = converter(value)
            except Exception as e:
                raise ConfigConverterError(self.__config.filename, self.__section, key) from e
        self.__config.set(self.__section, key, value)

    def keys(self):
        try:
            return self.__config.get_section_data(self.__section).keys()
        except ConfigKeyError:
            return {}.keys()

    def clear_cache(self):
        """ Clear the converted value cache. """
        self.__cache.clear()

    def write(self):
        """ If the config data is dirty, write to file. """
        self.__config.write()

    def __str__(self):
        return "{!s}:{}".format(self.__config, self.__section)

    def __repr__(self):
        return "Config<{!s}, data={!r}>".format(self, dict(
            (k, self.__config.get(self.__section, k)) for k in self.keys()))

    def __eq__(self, other):
        if not isinstance(other, SectionView):
            return NotImplemented
        return self.__section == other.__section and self.__config is other.__config


def log_level(value: str):
    """
    Converter for the ``logging.level`` and ``logging.tags`` config values.
    """
    log_level_map = {
        'CRITICAL': logging.CRITICAL,
        'ERROR': logging.ERROR,
        'WARNING': logging.WARNING,
        'WARN': logging.WARNING,
        'INFO': logging.INFO,
        'DEBUG': logging.DEBUG,
    }
    return log_level_map[value.upper()]


def load_config(filename: str, defaults=None, read_only=False) -> ChatFilterConfig:
    """
    Load the configuration file for a chat filter process. The caller owns the returned object.
    """
    if defaults is None:
        from chatfilter import cfg_defaults
        defaults = cfg_defaults
    return ChatFilterConfig(filename, defaults=defaults, read_only=read_only)

"""
Store settings.

Settings are read from the environment (and optional settings files) through Dynaconf, using the
PROPGRAPH_ prefix, e.g. PROPGRAPH_PARTITIONS=8. The resulting StoreSettings object is passed
explicitly to the GraphDB; nothing reads the environment behind its back.
"""

import dataclasses
import logging
import typing

from dynaconf import Dynaconf

ENVVAR_PREFIX = 'PROPGRAPH'

_LOG_LEVELS = ('CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG')


@dataclasses.dataclass(frozen=True)
class StoreSettings:
    # ---------------- Persistence ----------------
    save_dir: typing.Optional[str] = None
    change_log_size: int = 10000

    # ---------------- Indexing ----------------
    partitions: int = 4
    propagation_delay: float = 0.0
    await_timeout: float = 60.0
    index_workers: int = 2

    # ---------------- Schema ----------------
    auto_schema: bool = True

    # ---------------- Logging ----------------
    log_level: str = 'INFO'

    def __post_init__(self):
        if self.partitions < 1:
            raise ValueError("partitions must be at least 1: %r" % (self.partitions,))
        if self.propagation_delay < 0:
            raise ValueError("propagation_delay cannot be negative: %r" %
                             (self.propagation_delay,))
        if self.await_timeout <= 0:
            raise ValueError("await_timeout must be positive: %r" % (self.await_timeout,))
        if self.index_workers < 1:
            raise ValueError("index_workers must be at least 1: %r" % (self.index_workers,))
        if self.change_log_size < 1:
            raise ValueError("change_log_size must be at least 1: %r" % (self.change_log_size,))
        if str(self.log_level).upper() not in _LOG_LEVELS:
            raise ValueError("Unrecognized log_level: %r" % (self.log_level,))

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level.upper())

    @classmethod
    def from_env(cls, settings_files: typing.Sequence[str] = (), **overrides) -> 'StoreSettings':
        """Build the settings from PROPGRAPH_* environment variables and the given settings files.
        Keyword arguments take precedence over both."""
        settings = Dynaconf(
            envvar_prefix=ENVVAR_PREFIX,
            load_dotenv=True,
            settings_files=list(settings_files),
        )
        defaults = cls()
        values = {}
        for field in dataclasses.fields(cls):
            value = settings.get(field.name.upper(), getattr(defaults, field.name))
            if value is not None and field.name != 'save_dir':
                value = _convert(field.name, type(getattr(defaults, field.name)), value)
            values[field.name] = value
        values.update(overrides)
        return cls(**values)


def _convert(name: str, field_type: type, value: typing.Any) -> typing.Any:
    # Dynaconf parses environment values as TOML, so most arrive with the right type already.
    if field_type is bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ('1', 'true', 'yes', 'on'):
                return True
            if lowered in ('0', 'false', 'no', 'off'):
                return False
            raise ValueError("Setting %s expects a boolean, got %r." % (name, value))
        return bool(value)
    try:
        return field_type(value)
    except (TypeError, ValueError):
        raise ValueError("Setting %s expects a value of type %s, got %r." %
                         (name, field_type.__name__, value)) from None

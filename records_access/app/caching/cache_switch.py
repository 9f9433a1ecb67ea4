"""
Process-wide cache disable switch.
"""

from typing import Mapping, Union
from urllib.parse import parse_qsl, urlsplit

from shared.logging import get_logger


QUERY_PARAMS = ("nocache", "disable_cache")
TRUTHY = {"1", "true", "yes", "on", ""}


class CacheSwitch:
    """When disabled, cache reads miss and writes succeed without any I/O."""

    def __init__(self, disabled: bool = False):
        self._disabled = disabled
        self.logger = get_logger("records.cache_switch")

    @property
    def disabled(self) -> bool:
        return self._disabled

    def set_disabled(self, disabled: bool):
        if disabled != self._disabled:
            self.logger.info("Cache switch changed", disabled=disabled)
        self._disabled = disabled

    def disable(self):
        self.set_disabled(True)

    def enable(self):
        self.set_disabled(False)

    def apply_query_params(self, params: Union[str, Mapping[str, str]]) -> bool:
        """Apply ``?nocache=1`` style controls; returns the resulting state.

        A bare ``?nocache`` disables the cache, ``?nocache=0`` re-enables it.
        """
        if isinstance(params, str):
            query = urlsplit(params).query if "?" in params else params
            params = dict(parse_qsl(query, keep_blank_values=True))

        for name in QUERY_PARAMS:
            if name in params:
                self.set_disabled(str(params[name]).strip().lower() in TRUTHY)
        return self._disabled


# Global cache switch
cache_switch = CacheSwitch()

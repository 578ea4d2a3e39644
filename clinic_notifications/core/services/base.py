"""Base class for application services."""

from __future__ import annotations

import logging

from clinic_notifications.infra.logging import get_lazy_logger


class BaseService:
    """Gives every service a named logger pair.

    ``self.logger`` is used for INFO and above. ``self._lazy`` takes callables
    for DEBUG messages, which are only formatted when DEBUG is enabled.
    """

    def __init__(self) -> None:
        name = self.__class__.__name__
        self.logger = logging.getLogger(name)
        self._lazy = get_lazy_logger(name)

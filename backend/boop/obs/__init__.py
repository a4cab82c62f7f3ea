"""Observability bootstrap: JSON logging plus request middleware."""

from __future__ import annotations

from fastapi import FastAPI

from boop.obs import logging as obs_logging
from boop.obs import middleware
from boop.settings import settings

# Per-packet chatter from the socket stack
_NOISY_LOGGERS = ("socketio", "engineio")

_initialised = False


def init(app: FastAPI) -> None:
	global _initialised
	if _initialised or not settings.obs_enabled:
		return
	obs_logging.configure_logging()
	for name in _NOISY_LOGGERS:
		obs_logging.get_logger(name).setLevel("WARNING")
	middleware.install(app)
	_initialised = True


__all__ = ["init"]

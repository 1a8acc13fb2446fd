"""Configuration package."""

from .settings import Settings, settings  # noqa: F401

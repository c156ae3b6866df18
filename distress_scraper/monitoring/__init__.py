"""Monitoring and logging package."""

from .logger import setup_logging, ScrapingLogger, ETLLogger

__all__ = ["setup_logging", "ScrapingLogger", "ETLLogger"]

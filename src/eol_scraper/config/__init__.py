"""Configuration package for the EOL scraping service.

Re-exports the settings accessor so that callers can write::

    from eol_scraper.config import get_settings
"""

from eol_scraper.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]

"""
Web scraping components for the cinepath application.

This package contains:
- eiga.com listing, cinema and weekly-schedule parsers
- HTTP client management with timeouts and failure logging
"""

from cinepath.scraper.http_client import HttpClient

__all__ = ["HttpClient"]

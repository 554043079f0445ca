"""
Dashboard Package.

JSON API over the export engine. The HTML UI is not part of
this package.

Modules:
- api: aiohttp handlers and app factory
"""

from dashboard.api import ExportAPI, create_export_app

__all__ = ["ExportAPI", "create_export_app"]

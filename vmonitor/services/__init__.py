"""Service implementations for vmonitor.

Import service modules directly where needed; nothing is imported eagerly.
"""

__all__ = []

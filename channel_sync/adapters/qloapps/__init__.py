"""
QloApps channel-manager adapter
"""

from .api import QloAppsAPI

__all__ = ["QloAppsAPI"]

"""
Session clients.

- api: async REST client
- restore: live/historical view toggle
- session_client: interactive WebSocket client
"""

from .api import ApiError, SessionApiClient
from .restore import RestoreController, RestoreError

__all__ = [
    'ApiError',
    'SessionApiClient',
    'RestoreController',
    'RestoreError',
]

"""
Network implementations of the backend and realtime contracts.
"""

from .client import SiloAPIClient, close_session
from .realtime import RealtimeClient

__all__ = ['SiloAPIClient', 'RealtimeClient', 'close_session']

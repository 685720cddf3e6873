"""
Boundary decoding for rows and realtime pushes.
"""

from .decode import decode_change, decode_notification, decode_row

__all__ = ['decode_change', 'decode_notification', 'decode_row']

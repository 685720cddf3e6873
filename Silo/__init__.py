r"""
   _____ _ __
  / ___/(_) /___
  \__ \/ / / __ \
 ___/ / / / /_/ /
/____/_/_/\____/

Silo Project - client core for the Silo athlete community chat.

Rooms with threaded discussions, direct messages behind a request/accept gate,
notifications and unread badges, kept in sync with a hosted backend.
"""

__version__ = "1.0.0"

"""
Constants shared by the Silo client core.
"""

# Badge ceiling ("99+")
BADGE_CAP = 99

# Display labels
OP_LABEL = "OP"
ANONYMOUS_LABEL = "anonymous"
DELETED_REPLY_TEXT = "this reply was deleted"
DELETED_DM_TEXT = "Message deleted"

# Notification types the client renders
NOTIFICATION_TYPES = (
    "reply_to_you",
    "reply_in_discussion",
    "dm_request",
    "dm_request_accepted",
    "dm_received",
)

# DM request actions accepted by respond_dm_request
DM_REQUEST_ACTIONS = ("accept", "decline", "cancel")

# Activity types
ACTIVITY_REPLY_CREATED = "reply_created"

# Activity excerpt length
ACTIVITY_EXCERPT_CHARS = 140

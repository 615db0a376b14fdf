"""
Redis key namespace shared by every instance.
These strings are a cross-instance contract; do not rename them.
"""

EVENT_SLOTS_PATTERN = "event:*"
INITIALIZATION_LOCK = "cache:initialization:lock"
CONSISTENCY_LOCK = "cache:consistency:lock"
REINITIALIZATION_STATUS = "cache:reinitialization:status"
CONSISTENCY_STATUS = "cache:consistency:status"
MANUAL_REINITIALIZATION_FLAG = "cache:manual_reinitialization"


def event_slots_key(event_id: int) -> str:
    return f"event:{event_id}:slots"

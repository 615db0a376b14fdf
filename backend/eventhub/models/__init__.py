from eventhub.models.event import Event
from eventhub.models.registration import Registration

__all__ = ["Event", "Registration"]

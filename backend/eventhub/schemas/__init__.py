from eventhub.schemas.event import EventCreate, EventUpdate, EventResponse, EventListResponse
from eventhub.schemas.registration import RegistrationCreate, RegistrationResponse, UserRegistrationResponse
from eventhub.schemas.cache import SlotCacheEntry, StatusRecord, ReinitializationAccepted, CacheKeyValue, CacheKeysResponse

__all__ = [
    "EventCreate", "EventUpdate", "EventResponse", "EventListResponse",
    "RegistrationCreate", "RegistrationResponse", "UserRegistrationResponse",
    "SlotCacheEntry", "StatusRecord", "ReinitializationAccepted", "CacheKeyValue", "CacheKeysResponse",
]

from wabot.models.message import DeliveryStatus, Direction, Message
from wabot.models.processed_event import ProcessedEvent
from wabot.models.user import User

__all__ = [
    "User",
    "Message",
    "Direction",
    "DeliveryStatus",
    "ProcessedEvent",
]

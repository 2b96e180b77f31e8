from .user import User
from .listing import Listing
from .chat import Chat
from .message import Message
from .rental_agreement import RentalAgreement
from .rental_event import RentalEvent

__all__ = ["User", "Listing", "Chat", "Message", "RentalAgreement", "RentalEvent"]

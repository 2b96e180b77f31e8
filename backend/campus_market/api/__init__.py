from .rental_routes import bp as rentals_bp
from .chat_routes import bp as chats_bp

__all__ = [
    "rentals_bp",
    "chats_bp",
]

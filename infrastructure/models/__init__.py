"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .payment import OrderModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "OrderModel",
]

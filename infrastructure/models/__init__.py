"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
]

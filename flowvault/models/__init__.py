# Import all models for Tortoise ORM registration
from .base import BaseModel
from .catalog import FlowImage

__all__ = [
    "BaseModel",
    "FlowImage",
]

"""
Database Module
"""
from .connection import init_database, close_database, get_db
from .models import Base
from .repository import OrderStore, VariantCostStore

__all__ = [
    "init_database",
    "close_database",
    "get_db",
    "Base",
    "OrderStore",
    "VariantCostStore",
]

"""
Settlement Storage
==================

Store interface, in-memory and SQL engines, and per-buyer locks.
"""

from services.settlement.storage.base import SettlementStore
from services.settlement.storage.locks import LocalLockManager, LockManager, RedisLockManager
from services.settlement.storage.memory import MemorySettlementStore
from services.settlement.storage.sql import SqlSettlementStore

__all__ = [
    "SettlementStore",
    "MemorySettlementStore",
    "SqlSettlementStore",
    "LockManager",
    "LocalLockManager",
    "RedisLockManager",
]

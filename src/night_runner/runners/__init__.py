"""Dispatch loop and cross-process issue locking."""

from .dispatcher import DispatchItem, Dispatcher
from .locks import LockManager, pid_alive

__all__ = ["DispatchItem", "Dispatcher", "LockManager", "pid_alive"]

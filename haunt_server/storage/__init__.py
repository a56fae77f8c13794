"""
Storage module for sessions, devices, configuration and settings.
"""
from .store import HauntingStore

__all__ = ["HauntingStore"]

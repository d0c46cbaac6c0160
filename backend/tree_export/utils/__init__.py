from .timers import Debouncer, DelayedTask

__all__ = ["DelayedTask", "Debouncer"]

from . import kernel

__all__ = ["kernel"]

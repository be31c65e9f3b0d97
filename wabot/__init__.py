"""WhatsApp group bot: plugin runtime and feature plugins."""

__version__ = "1.0.0"

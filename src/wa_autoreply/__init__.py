"""WhatsApp auto-reply bot with keyword and LLM replies."""

__version__ = "0.1.0"

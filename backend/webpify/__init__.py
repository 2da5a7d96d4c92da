"""Image to WebP conversion service with ephemeral storage lifecycle."""

__version__ = "2.0.0"

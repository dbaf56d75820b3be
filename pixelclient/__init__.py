"""pixelclient: resilient async client for the PixelPerfect API."""

__version__ = "1.0.0"

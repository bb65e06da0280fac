"""Image processing service with graceful shutdown for spot instances."""

__version__ = '0.1.0'

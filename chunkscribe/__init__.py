"""chunkscribe — concurrent chunked subtitle generation."""

__version__ = "0.1.0"

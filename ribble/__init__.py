"""Audio visualisation analysis, background job workers and a WAV recording cache."""

__version__ = "0.1.2"
__all__ = ["visualizer", "worker", "writer"]
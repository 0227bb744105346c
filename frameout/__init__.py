"""Video output sinks, still-image writers and simple threaded encoders for camera frames."""

__version__ = "0.1.0"
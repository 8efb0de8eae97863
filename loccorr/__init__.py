"""Star detection, centroiding and position tracking on guiding-camera frames."""

__version__ = "0.0.1"
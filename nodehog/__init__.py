"""Node CPU hog: inject bounded CPU exhaustion onto cluster nodes."""

__version__ = "0.1.0"

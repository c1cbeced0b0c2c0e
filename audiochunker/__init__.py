"""Rolling audio recorder that delivers fixed-duration segments to a collector."""

__version__ = "0.1.0"

"""appsd - native application lifecycle agent for edge nodes."""

__version__ = "0.1.0"

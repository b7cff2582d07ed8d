"""A terminal dashboard for browsing and acting on Google Cloud resources."""

__version__ = "0.4.0"

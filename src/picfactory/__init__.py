"""Batch image generation against a remote content-generation web app."""

__version__ = "0.3.0"

"""Pressroom Engine - Background Jobs and Content Distribution

Workflow execution engine and multi-channel distribution pipeline for the
blog platform.
"""

__version__ = "0.1.0"

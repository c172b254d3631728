"""
Application package initializer.

This package contains the entrypoint for the API and its submodules:
``core`` holds settings, logging, errors and SQLite plumbing,
``services`` the FizzBuzz encoder and the hit-count stores,
``schemas`` the response models and ``api`` the versioned routes.
"""

from .main import app, create_app  # noqa: F401

"""
HTTP API for lexicon-spine.

Usage::

    from lexspine.api import create_app

    app = create_app()  # ready for uvicorn
"""

from lexspine.api.app import create_app

__all__ = ["create_app"]

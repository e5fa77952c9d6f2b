"""
Convertly document conversion service package.

This module provides a FastAPI application that converts documents between
formats with pandoc. The conversion endpoint is available at `/api/convert`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"

"""Renderer package."""

from .html_renderer import HTMLRenderer
from .math import MathMLRenderer, MathRenderer, MathResult

__all__ = ["HTMLRenderer", "MathMLRenderer", "MathRenderer", "MathResult"]

"""scholarize: TeX source trees to annotated HTML fragments."""

from scholarize.config import Settings, load_settings
from scholarize.converter import ConversionResult, TeXConverter
from scholarize.errors import Diagnostic, ScholarizeError

__version__ = "0.1.0"

__all__ = [
    "ConversionResult",
    "Diagnostic",
    "ScholarizeError",
    "Settings",
    "TeXConverter",
    "load_settings",
]

"""
Printable document assembly.
"""

from .builder import PAGE_SIZES, DocumentAssembler, fit_box

__all__ = ["DocumentAssembler", "PAGE_SIZES", "fit_box"]

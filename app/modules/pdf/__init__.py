from .guard import assert_within_limit, estimate_token_usage, total_payload_size
from .optimizer import ImageOptimizer
from .rasterizer import PdfRasterizer, validate_pdf_bytes

__all__ = [
    "ImageOptimizer",
    "PdfRasterizer",
    "assert_within_limit",
    "estimate_token_usage",
    "total_payload_size",
    "validate_pdf_bytes",
]

"""Coverage collection and decoding."""

from testing_manager.coverage.decoder import (
    decode_declarations,
    decode_statements,
    method_offsets,
    unpack_lines,
)
from testing_manager.coverage.loader import CoverageLoader

__all__ = [
    "CoverageLoader",
    "decode_declarations",
    "decode_statements",
    "method_offsets",
    "unpack_lines",
]

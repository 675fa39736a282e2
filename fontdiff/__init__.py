"""Font-aware brotli binary diffs built from hand-written brotli streams."""

__version__ = "0.1.0"

__all__ = ["bit_buffer", "encoder", "stream", "differs", "table_range", "font_diff"]
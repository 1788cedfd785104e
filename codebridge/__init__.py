"""Code Bridge: collaborative editing relay with sandboxed code execution."""

__version__ = "1.0.0"

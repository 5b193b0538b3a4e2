"""
runtimekit: a per-user version manager for Node.js, Rust, Python and Go.
"""

__version__ = "0.1.0"

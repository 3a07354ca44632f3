"""Run PHP binaries and Composer, prepare local PHP servers and track them in pid files."""

__version__ = "0.1.0"
"""Asynchronous BLAST/Foldseek job backend for the ECOD domain browser."""

from importlib.metadata import version, PackageNotFoundError

__all__ = ["__version__"]

try:
    __version__ = version("ecodsearch")
except PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.1.0"

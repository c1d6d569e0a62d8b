# src/mgp/__init__.py
"""Parallel sample orchestration for the metagenomics pipeline."""

__version__ = "0.1.0"

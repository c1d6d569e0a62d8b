# src/mgp/commands/__init__.py
"""
Command package.

Submodules are imported explicitly by mgp.cli to avoid circular imports.
Do NOT import submodules here.
"""
__all__ = [
    "run_pipeline",
    "run_stage",
    "doctor",
    "status",
    "convert",
]

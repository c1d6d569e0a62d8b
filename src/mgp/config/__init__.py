# src/mgp/config/__init__.py

# src/mgp/engine/__init__.py

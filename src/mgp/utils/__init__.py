# src/mgp/utils/__init__.py

# src/mgp/formats/__init__.py

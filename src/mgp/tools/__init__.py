# src/mgp/tools/__init__.py

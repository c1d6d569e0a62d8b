# src/mgp/plan/__init__.py

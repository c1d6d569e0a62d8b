# src/mgp/stages/__init__.py

# FILE: atelier/__init__.py
"""Atelier workspace core: intent routing, generation orchestration, virtual projects."""

__version__ = "1.0.0"

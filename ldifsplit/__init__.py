"""
Split one LDIF directory tree into several balanced sets.
"""

__version__ = "1.0.0"

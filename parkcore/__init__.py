"""
parkcore - slot allocation and session lifecycle engine for multi-floor
parking facilities.
"""

__version__ = "1.0.0"

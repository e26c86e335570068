"""
slotbooker - availability and booking engine for appointment scheduling.
"""

__version__ = "0.1.0"

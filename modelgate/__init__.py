"""
ModelGate - semantic modeling and query compilation for BI.
"""

__version__ = "1.0.0"

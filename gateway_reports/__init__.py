"""
Gateway Request Reports
Time-windowed request outcome reports backed by a single-flight cache and periodic aggregates
"""

__version__ = "0.4.0"

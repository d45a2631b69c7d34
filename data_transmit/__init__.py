"""
Data Transmit - spool directory uploader.

Uploads files dropped into spool directories to a remote HTTP collector,
retries failed uploads on a fixed timer and bounds the unsent backlog.
"""

__version__ = "1.0.0"

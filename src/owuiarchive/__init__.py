"""
owuiarchive: move Open WebUI resources through portable archives.
"""

__version__ = "0.3.0"

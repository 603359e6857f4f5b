"""
Command line interface for owuiarchive.
"""

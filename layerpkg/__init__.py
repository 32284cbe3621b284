"""
layerpkg - Layered package management client for image-based systems

Asks the system package daemon to add or remove layered packages:
- Local .rpm archives and repository package names
- Transaction progress streamed from the daemon
- Package diff of the pending deployment
"""

__version__ = "0.1.0"
__author__ = "layerpkg contributors"

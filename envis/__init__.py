"""
Envis: versioned runtimes, databases and network services for a developer
workstation, grouped into environments that a new terminal inherits.
"""

__version__ = "0.1.0"

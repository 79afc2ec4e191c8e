"""
meshdeploy - MeshCentral deployment and management for Debian hosts.
"""

__version__ = "1.0.0"

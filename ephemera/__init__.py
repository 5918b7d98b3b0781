"""
Ephemera - ephemeral object storage with verifiable TTL deletion.
"""
__version__ = "1.0.0"

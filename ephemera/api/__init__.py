"""
HTTP surface of the ephemeral object engine.
"""

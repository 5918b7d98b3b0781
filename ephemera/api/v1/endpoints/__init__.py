"""
Endpoint modules:
- uploads: upload session lifecycle
- files: downloads and deletion requests for stored objects
- cleanup: manual cleanup trigger and deletion audit log
"""

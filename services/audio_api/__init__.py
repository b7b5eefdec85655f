"""Silence Strip - Audio API service.

FastAPI service for upload -> silence removal -> MP3 download.
"""

__all__: list[str] = []

"""Silence Strip - Core application modules.

Provides:
- Environment configuration
- Pydantic models for transcode options and API payloads
- Transcode invoker (ffmpeg) and probe utilities (ffprobe)
- Scratch storage and stream I/O utilities
"""

__version__ = "0.1.0"

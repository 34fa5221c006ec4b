"""
voxclip - Toggle voice capture, transcribe remotely, deliver to the clipboard.

This package provides:
- A PID lock so a second invocation stops the first instead of starting
- A per-invocation session state machine (record -> transcribe -> deliver)
- Pluggable remote transcription providers with typed retry policies
- A backup of every recording until its text has been delivered

Main entry point: python -m voxclip
"""

__version__ = "1.0.0"

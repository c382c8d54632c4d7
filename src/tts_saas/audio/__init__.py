"""
Audio Plumbing.

    - splitter.py: Fan one upstream byte stream out to two readers
    - store.py: Append-once WAV storage on local disk
"""
from .splitter import Branch, SplitStream, split
from .store import AudioStore, AudioWriter, is_safe_filename

__all__ = [
    "split",
    "SplitStream",
    "Branch",
    "AudioStore",
    "AudioWriter",
    "is_safe_filename",
]

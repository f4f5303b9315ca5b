"""Media transform providers."""

from nodeflow.media.transloadit import MediaProcessor, MediaResult, TransloaditProcessor

__all__ = ["MediaProcessor", "MediaResult", "TransloaditProcessor"]

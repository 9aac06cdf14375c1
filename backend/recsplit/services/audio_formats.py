"""
Container and codec tables for stream-copy segmentation.

Segments are cut with `-c copy`, so the output container has to be able to
carry the source codec as-is. Some containers are restricted to one codec
family (an .mp3 file can only hold MP3 audio); when the source codec does not
fit the input's own container (device files that are Opus-in-Ogg but stored
under an .mp3 name) the codec's native container is used instead.
"""

from pathlib import PurePosixPath
from typing import Optional

DEFAULT_CONTAINER = ".ogg"

CONTENT_TYPES = {
    ".ogg": "audio/ogg",
    ".opus": "audio/ogg",
    ".oga": "audio/ogg",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
    ".aac": "audio/aac",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".webm": "audio/webm",
    ".mka": "audio/x-matroska",
}

# Codecs each container can hold without re-encoding. None = anything.
_CONTAINER_CODECS = {
    ".mp3": {"mp3"},
    ".ogg": {"opus", "vorbis", "flac", "speex"},
    ".opus": {"opus"},
    ".oga": {"opus", "vorbis", "flac", "speex"},
    ".m4a": {"aac", "alac", "mp3"},
    ".mp4": {"aac", "alac", "mp3"},
    ".aac": {"aac"},
    ".flac": {"flac"},
    ".webm": {"opus", "vorbis"},
    ".mka": None,
}

_NATIVE_CONTAINER = {
    "mp3": ".mp3",
    "opus": ".ogg",
    "vorbis": ".ogg",
    "speex": ".ogg",
    "flac": ".flac",
    "aac": ".m4a",
    "alac": ".m4a",
}


def container_of(storage_key: str) -> str:
    """Lower-cased extension of a storage key (`.ogg` when it has none)."""
    suffix = PurePosixPath(storage_key).suffix.lower()
    return suffix or DEFAULT_CONTAINER


def _can_carry(container: str, codec: str) -> bool:
    if container == ".wav":
        return codec.startswith("pcm_")
    if container not in _CONTAINER_CODECS:
        return False
    allowed = _CONTAINER_CODECS[container]
    return allowed is None or codec in allowed


def choose_output_container(input_container: str, codec: Optional[str]) -> str:
    """
    Container for the segments of a source with the given container and codec.

    Unknown codec → keep the input container unchanged.
    """
    if not codec:
        return input_container
    codec = codec.lower()
    if _can_carry(input_container, codec):
        return input_container
    if codec.startswith("pcm_"):
        return ".wav"
    return _NATIVE_CONTAINER.get(codec, ".mka")


def content_type_for(container: str) -> str:
    return CONTENT_TYPES.get(container, "application/octet-stream")

"""
Error types raised by the animerge pipeline.

Every component either applies its change completely or raises one of these
without touching the registry or material state it was given.
"""

from typing import Optional


class AnimergeError(Exception):
    """Base class for all pipeline errors"""

    def __init__(self, message: str, asset: Optional[str] = None):
        super().__init__(message)
        self.asset = asset

    def __str__(self) -> str:
        message = super().__str__()
        if self.asset:
            return f"{self.asset}: {message}"
        return message


class SourceParseError(AnimergeError):
    """Malformed or unsupported animation/model asset"""


class ImageDecodeError(AnimergeError):
    """Texture bytes could not be decoded as an image"""


class InvalidSlotError(AnimergeError, KeyError):
    """Unknown texture slot name"""

    # KeyError.__str__ would repr() the message
    __str__ = AnimergeError.__str__


class EncodeError(AnimergeError):
    """The scene encoder failed to produce a binary asset"""


class InvalidTrackError(AnimergeError, ValueError):
    """Keyframe values do not match keyframe times for the track's property"""


class MaterialClassificationError(AnimergeError, ValueError):
    """A source material reports more than one shading capability"""


class TextureBindingError(AnimergeError):
    """A binding would leave a material in a half-applied texture mode"""


class FileAccessError(AnimergeError):
    """Reading an input file failed"""

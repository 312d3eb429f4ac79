"""
animerge
========
Merges skeletal animation clips from several FBX/glTF files onto one rigged
model, normalizes its materials to PBR and exports a single GLB.

Key modules:
- clips: tracks, root-motion removal, playback, the clip registry
- materials: classification, PBR normalization, texture slot binding
- pipeline: decoding, the editing session, validation and export
- server: MCP tool surface over a session

Import Strategy:
    Pipeline exports are loaded lazily via __getattr__, so importing the
    clip and material code does not pull in the codec or Blender transport.

    Example:
        from animerge import ClipRegistry   # clips only
        from animerge import Session        # loads the pipeline
"""

from .errors import (
    AnimergeError,
    EncodeError,
    FileAccessError,
    ImageDecodeError,
    InvalidSlotError,
    InvalidTrackError,
    MaterialClassificationError,
    SourceParseError,
    TextureBindingError,
)
from .clips import Clip, ClipPlayer, ClipRegistry, PropertyKind, Track, remove_root_motion
from .materials import MaterialDescriptor, TextureRef, TextureSlotBinder, normalize_material

__version__ = "0.1.0"

__all__ = [
    # Errors
    'AnimergeError',
    'EncodeError',
    'FileAccessError',
    'ImageDecodeError',
    'InvalidSlotError',
    'InvalidTrackError',
    'MaterialClassificationError',
    'SourceParseError',
    'TextureBindingError',
    # Eagerly loaded
    'Clip',
    'ClipPlayer',
    'ClipRegistry',
    'PropertyKind',
    'Track',
    'remove_root_motion',
    'MaterialDescriptor',
    'TextureRef',
    'TextureSlotBinder',
    'normalize_material',
    # Lazily loaded
    'Session',
    'LoadedFileHandle',
    'LocalFileProvider',
    'BlenderCodec',
    'GltfCodec',
    'ExportCoordinator',
]

# Pipeline exports resolved on first access
_LAZY_PIPELINE = ('Session', 'LoadedFileHandle', 'LocalFileProvider', 'BlenderCodec', 'GltfCodec', 'ExportCoordinator')

_lazy_cache = {}


def __getattr__(name: str):
    if name in _lazy_cache:
        return _lazy_cache[name]

    if name in _LAZY_PIPELINE:
        from . import pipeline
        for export in _LAZY_PIPELINE:
            _lazy_cache[export] = getattr(pipeline, export)
        return _lazy_cache[name]

    raise AttributeError(f"module 'animerge' has no attribute '{name}'")

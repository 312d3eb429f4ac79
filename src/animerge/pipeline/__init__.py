"""
Pipeline: source decoding, the editing session, validation and export.
"""

from .files import FileOrigin, LoadedFileHandle, LocalFileProvider, WriteResult, WriteStatus
from .scene import ExportScene, ParsedSource, TargetModel, clip_summary
from .gltf_io import GlbEncoder, parse_gltf_source, read_gltf
from .codec import SUPPORTED_SOURCE_FORMATS, BlenderCodec, CodecSettings, GltfCodec
from .validator import ValidationReport, validate_glb
from .export import ExportCoordinator, ExportReport, export_filename
from .session import Session, SourceResult

__all__ = [
    # Files
    'FileOrigin',
    'LoadedFileHandle',
    'LocalFileProvider',
    'WriteResult',
    'WriteStatus',
    # Scene
    'ExportScene',
    'ParsedSource',
    'TargetModel',
    'clip_summary',
    # Codec
    'GlbEncoder',
    'parse_gltf_source',
    'read_gltf',
    'SUPPORTED_SOURCE_FORMATS',
    'BlenderCodec',
    'CodecSettings',
    'GltfCodec',
    # Validation and export
    'ValidationReport',
    'validate_glb',
    'ExportCoordinator',
    'ExportReport',
    'export_filename',
    # Session
    'Session',
    'SourceResult',
]

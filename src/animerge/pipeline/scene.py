"""
Scene data exchanged with the decoder and encoder.

Decoders turn a LoadedFileHandle into a ParsedSource; the exporter hands an
ExportScene to an encoder. Every source, whatever its original format, is
carried as GLB bytes from decoding onwards.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..clips import Clip
from ..materials import MaterialDescriptor, SourceMaterial
from .files import LoadedFileHandle


@dataclass
class ParsedSource:
    """What a decoder found in one source asset"""
    clips: List[Clip] = field(default_factory=list)
    materials: List[SourceMaterial] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    # The source as GLB (converted first for FBX)
    glb: bytes = b""


@dataclass
class TargetModel:
    """The rigged model clips are merged onto; geometry stays in ``glb``"""
    name: str
    source: LoadedFileHandle
    glb: bytes
    stats: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExportScene:
    """Fully normalized state handed to the encoder"""
    model: TargetModel
    clips: List[Clip]
    materials: List[MaterialDescriptor]


def clip_summary(clip: Clip, index: Optional[int] = None) -> Dict[str, Any]:
    """Short description used by reports and the MCP tools"""
    summary = {
        "name": clip.name,
        "duration": round(clip.duration, 4),
        "static_pose": clip.is_static_pose,
        "tracks": len(clip.tracks),
    }
    if index is not None:
        summary["index"] = index
    return summary

"""
Export Coordinator

Hands the fully prepared scene to the encoder, validates what comes back and
passes the bytes to the file-access provider.

Usage:
    coordinator = ExportCoordinator(GltfCodec(), LocalFileProvider())
    report = coordinator.export(scene, filename="hero")
    print(report.summary())
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import EncodeError
from ..materials import MaterialKind, slot_color_space
from .codec import SceneEncoder
from .files import FileAccessProvider, WriteStatus
from .scene import ExportScene, clip_summary
from .validator import Severity, ValidationReport, validate_glb

logger = logging.getLogger(__name__)


DEFAULT_EXPORT_NAME = "model"
EXPORT_EXTENSION = ".glb"


def export_filename(primary_source_name: Optional[str], override: Optional[str] = None) -> str:
    """
    File name for the exported GLB.

    The override wins unless blank; otherwise the primary source's base name
    is used. A trailing .glb/.gltf is stripped and .glb always appended.
    """
    base = Path((override or "").strip()).name
    if not base and primary_source_name:
        base = Path(primary_source_name).stem
    base = re.sub(r'\.(glb|gltf)$', '', base, flags=re.IGNORECASE).strip()
    return f"{base or DEFAULT_EXPORT_NAME}{EXPORT_EXTENSION}"


@dataclass
class ExportReport:
    """Report of one export"""
    success: bool = False
    filename: str = ""
    path: Optional[str] = None
    status: Optional[WriteStatus] = None
    size_bytes: int = 0

    clips: List[Dict[str, Any]] = field(default_factory=list)
    materials: List[str] = field(default_factory=list)

    validation: Optional[ValidationReport] = None

    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "filename": self.filename,
            "path": self.path,
            "status": self.status.value if self.status else None,
            "size_bytes": self.size_bytes,
            "clips": self.clips,
            "materials": self.materials,
            "validation": self.validation.to_dict() if self.validation else None,
            "warnings": self.warnings,
            "errors": self.errors,
        }

    def summary(self) -> str:
        lines = [
            "Export Report",
            "=============",
            f"File:   {self.path or self.filename}",
            f"Status: {'SUCCESS' if self.success else (self.status.value.upper() if self.status else 'FAILED')}",
            f"Size:   {self.size_bytes} bytes",
            f"Clips ({len(self.clips)}): {', '.join(c['name'] for c in self.clips)}",
            f"Materials ({len(self.materials)}): {', '.join(self.materials)}",
        ]
        if self.validation:
            lines.append(f"Validation: errors {self.validation.error_count}, warnings {self.validation.warning_count}")
        for w in self.warnings:
            lines.append(f"  warning: {w}")
        for e in self.errors:
            lines.append(f"  error: {e}")
        return "\n".join(lines)


def check_scene(scene: ExportScene):
    """
    Refuse scenes that were not fully normalized.

    Raises:
        EncodeError: Naming the first offending material or clip
    """
    for descriptor in scene.materials:
        if descriptor.kind is not MaterialKind.STANDARD_PBR:
            raise EncodeError(f"Material is {descriptor.kind.value}, not PBR", asset=descriptor.name)
        for slot, ref in descriptor.bound_textures().items():
            if ref.color_space is not slot_color_space(slot):
                raise EncodeError(
                    f"Texture '{ref.name}' in {slot} is tagged {ref.color_space.value}",
                    asset=descriptor.name,
                )
            if ref.disposed:
                raise EncodeError(f"Texture '{ref.name}' in {slot} was released", asset=descriptor.name)

    for i, clip in enumerate(scene.clips):
        if not clip.name:
            raise EncodeError(f"Clip {i} has no name", asset=scene.model.name)


class ExportCoordinator:
    """
    Encodes and persists an ExportScene.

    Encoder failures are raised to the caller as the encoder's EncodeError,
    unchanged and without retry. A GLB that fails validation is not written.
    """

    def __init__(self, encoder: SceneEncoder, provider: FileAccessProvider):
        self.encoder = encoder
        self.provider = provider

    def export(self, scene: ExportScene, filename: Optional[str] = None) -> ExportReport:
        """
        Args:
            scene: Target model, active clips and normalized materials
            filename: Name override; defaults to the model's source name

        Returns:
            ExportReport; ``success`` is False if the provider cancelled or
            failed the write

        Raises:
            EncodeError: Scene not normalized, encoder failure, or invalid output
        """
        name = export_filename(scene.model.source.name, filename)
        report = ExportReport(
            filename=name,
            clips=[clip_summary(clip, i) for i, clip in enumerate(scene.clips)],
            materials=[m.name for m in scene.materials],
        )

        check_scene(scene)

        logger.info(f"Encoding {len(scene.clips)} clip(s) and {len(scene.materials)} material(s) into {name}")
        data = self.encoder.encode(scene)
        report.size_bytes = len(data)
        report.warnings.extend(getattr(self.encoder, "warnings", []))

        report.validation = validate_glb(data, name)
        if not report.validation.valid:
            first = next(i for i in report.validation.issues if i.severity is Severity.ERROR)
            raise EncodeError(f"Encoder produced an invalid GLB: {first.message}", asset=name)

        result = self.provider.write(data, name)
        report.status = result.status
        report.path = result.path
        report.success = result.ok
        if result.status is WriteStatus.CANCELLED:
            report.warnings.append(result.reason or "Export cancelled")
            logger.info(f"Export of {name} cancelled")
        elif result.status is WriteStatus.FAILURE:
            report.errors.append(result.reason or "Write failed")
            logger.error(f"Export of {name} failed: {result.reason}")
        else:
            logger.info(f"Exported {name} ({len(data)} bytes)")
        return report

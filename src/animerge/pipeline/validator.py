"""
GLB Validator

Checks encoder output before it is written. Catches problems that would make
a viewer reject or misrender the merged file.

Validation Checks:
- Container: GLB header and chunks, asset version
- References: node/mesh/skin/material/texture/accessor indices
- Materials: metallic-roughness factors, alpha modes
- Animations: channel targets, sampler accessors, key counts
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import SourceParseError
from .gltf_io import TYPE_COMPONENTS, read_gltf


class Severity(Enum):
    ERROR = "error"      # Viewers will reject the file
    WARNING = "warning"  # May render incorrectly
    INFO = "info"


@dataclass
class ValidationIssue:
    severity: Severity
    category: str
    message: str
    path: Optional[str] = None  # JSON path, e.g. animations[0].channels[2]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "category": self.category,
            "message": self.message,
            "path": self.path,
        }


@dataclass
class ValidationReport:
    name: str
    valid: bool = True
    issues: List[ValidationIssue] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def add_error(self, category: str, message: str, path: Optional[str] = None):
        self.issues.append(ValidationIssue(Severity.ERROR, category, message, path))
        self.valid = False

    def add_warning(self, category: str, message: str, path: Optional[str] = None):
        self.issues.append(ValidationIssue(Severity.WARNING, category, message, path))

    def add_info(self, category: str, message: str, path: Optional[str] = None):
        self.issues.append(ValidationIssue(Severity.INFO, category, message, path))

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity is Severity.WARNING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "valid": self.valid,
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "issues": [i.to_dict() for i in self.issues],
            "stats": self.stats,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def summary(self) -> str:
        lines = [
            f"Validation Report: {self.name}",
            f"Status: {'VALID' if self.valid else 'INVALID'}",
            f"Errors: {self.error_count}, Warnings: {self.warning_count}",
        ]
        for issue in self.issues:
            location = f" at {issue.path}" if issue.path else ""
            lines.append(f"  [{issue.severity.value}] [{issue.category}] {issue.message}{location}")
        return "\n".join(lines)


class GlbValidator:
    """Validates GLB bytes in memory"""

    def __init__(self):
        self.gltf: Dict[str, Any] = {}
        self.report: Optional[ValidationReport] = None

    def validate(self, data: bytes, name: str = "") -> ValidationReport:
        self.report = ValidationReport(name=name)

        if data[:4] != b'glTF':
            self.report.add_error("format", "Invalid GLB magic bytes")
            return self.report
        try:
            doc = read_gltf(data, name)
        except SourceParseError as e:
            self.report.add_error("parse", f"Failed to parse GLB: {e}")
            return self.report

        self.gltf = doc.json
        self._check_asset()
        self._check_references()
        self._check_materials()
        self._check_animations()
        self._gather_stats(data)
        return self.report

    def _count(self, key: str) -> int:
        return len(self.gltf.get(key, []))

    def _check_index(self, index: Any, target: str, path: str):
        if not isinstance(index, int) or not 0 <= index < self._count(target):
            self.report.add_error("reference", f"Invalid {target} index {index}", path)

    def _check_asset(self):
        asset = self.gltf.get("asset")
        if asset is None:
            self.report.add_error("structure", "Missing required 'asset' property")
        elif asset.get("version") != "2.0":
            self.report.add_error("version", f"Unexpected glTF version: {asset.get('version')}")

        if not self.gltf.get("scenes"):
            self.report.add_warning("scene", "No scenes defined")
        if "scene" in self.gltf:
            self._check_index(self.gltf["scene"], "scenes", "scene")

    def _check_references(self):
        for i, node in enumerate(self.gltf.get("nodes", [])):
            for key, target in (("mesh", "meshes"), ("skin", "skins"), ("camera", "cameras")):
                if key in node:
                    self._check_index(node[key], target, f"nodes[{i}].{key}")
            for j, child in enumerate(node.get("children", [])):
                self._check_index(child, "nodes", f"nodes[{i}].children[{j}]")

        for i, scene in enumerate(self.gltf.get("scenes", [])):
            for j, node in enumerate(scene.get("nodes", [])):
                self._check_index(node, "nodes", f"scenes[{i}].nodes[{j}]")

        for i, mesh in enumerate(self.gltf.get("meshes", [])):
            for j, prim in enumerate(mesh.get("primitives", [])):
                path = f"meshes[{i}].primitives[{j}]"
                if "POSITION" not in prim.get("attributes", {}):
                    self.report.add_error("mesh", "Missing POSITION attribute", path)
                for attribute, accessor in prim.get("attributes", {}).items():
                    self._check_index(accessor, "accessors", f"{path}.attributes.{attribute}")
                if "indices" in prim:
                    self._check_index(prim["indices"], "accessors", f"{path}.indices")
                if "material" in prim:
                    self._check_index(prim["material"], "materials", f"{path}.material")

        for i, skin in enumerate(self.gltf.get("skins", [])):
            for j, joint in enumerate(skin.get("joints", [])):
                self._check_index(joint, "nodes", f"skins[{i}].joints[{j}]")
            if "inverseBindMatrices" in skin:
                self._check_index(skin["inverseBindMatrices"], "accessors", f"skins[{i}].inverseBindMatrices")

        for i, accessor in enumerate(self.gltf.get("accessors", [])):
            if "bufferView" in accessor:
                self._check_index(accessor["bufferView"], "bufferViews", f"accessors[{i}].bufferView")

        for i, texture in enumerate(self.gltf.get("textures", [])):
            if "source" in texture:
                self._check_index(texture["source"], "images", f"textures[{i}].source")
            if "sampler" in texture:
                self._check_index(texture["sampler"], "samplers", f"textures[{i}].sampler")

        for i, image in enumerate(self.gltf.get("images", [])):
            if "bufferView" in image:
                self._check_index(image["bufferView"], "bufferViews", f"images[{i}].bufferView")
                if "mimeType" not in image:
                    self.report.add_error("texture", "Embedded image has no mimeType", f"images[{i}]")
            elif "uri" not in image:
                self.report.add_error("texture", "Image has no uri or bufferView", f"images[{i}]")

    def _check_materials(self):
        for i, mat in enumerate(self.gltf.get("materials", [])):
            path = f"materials[{i}]"
            pbr = mat.get("pbrMetallicRoughness")
            if pbr is None:
                self.report.add_warning("material", "Material is not metallic-roughness PBR", path)
                pbr = {}

            base_color = pbr.get("baseColorFactor", [1, 1, 1, 1])
            if len(base_color) != 4:
                self.report.add_error("material", "baseColorFactor must have 4 components", path)
            elif any(c < 0 or c > 1 for c in base_color):
                self.report.add_warning("material", "baseColorFactor values should be 0-1", path)

            for key in ("metallicFactor", "roughnessFactor"):
                value = pbr.get(key, 1.0)
                if not 0 <= value <= 1:
                    self.report.add_warning("material", f"{key} out of range: {value}", path)

            texture_infos = [
                (f"{path}.pbrMetallicRoughness.{key}", pbr.get(key))
                for key in ("baseColorTexture", "metallicRoughnessTexture")
            ] + [
                (f"{path}.{key}", mat.get(key))
                for key in ("normalTexture", "occlusionTexture", "emissiveTexture")
            ]
            for info_path, info in texture_infos:
                if info is not None:
                    self._check_index(info.get("index"), "textures", info_path)

            alpha_mode = mat.get("alphaMode", "OPAQUE")
            if alpha_mode not in ("OPAQUE", "MASK", "BLEND"):
                self.report.add_error("material", f"Invalid alphaMode: {alpha_mode}", path)

    def _check_animations(self):
        accessors = self.gltf.get("accessors", [])
        names = set()

        for i, anim in enumerate(self.gltf.get("animations", [])):
            path = f"animations[{i}]"
            name = anim.get("name")
            if not name:
                self.report.add_warning("animation", "Animation has no name", path)
            elif name in names:
                self.report.add_info("animation", f"Duplicate animation name '{name}'", path)
            names.add(name)

            channels = anim.get("channels", [])
            samplers = anim.get("samplers", [])
            if not channels:
                self.report.add_error("animation", "Animation has no channels", path)

            for j, channel in enumerate(channels):
                ch_path = f"{path}.channels[{j}]"
                sampler = channel.get("sampler")
                if not isinstance(sampler, int) or not 0 <= sampler < len(samplers):
                    self.report.add_error("animation", f"Invalid sampler index: {sampler}", ch_path)
                target = channel.get("target", {})
                if "node" in target:
                    self._check_index(target["node"], "nodes", f"{ch_path}.target.node")
                if target.get("path") not in ("translation", "rotation", "scale", "weights"):
                    self.report.add_error("animation", f"Invalid target path: {target.get('path')}", ch_path)

            for j, sampler in enumerate(samplers):
                s_path = f"{path}.samplers[{j}]"
                input_idx, output_idx = sampler.get("input"), sampler.get("output")
                valid = True
                for key, idx in (("input", input_idx), ("output", output_idx)):
                    if not isinstance(idx, int) or not 0 <= idx < len(accessors):
                        self.report.add_error("animation", f"Invalid {key} accessor", s_path)
                        valid = False
                if not valid:
                    continue

                interpolation = sampler.get("interpolation", "LINEAR")
                if interpolation not in ("LINEAR", "STEP", "CUBICSPLINE"):
                    self.report.add_error("animation", f"Invalid interpolation: {interpolation}", s_path)
                if "min" not in accessors[input_idx] or "max" not in accessors[input_idx]:
                    self.report.add_error("animation", "Input accessor needs min and max", s_path)

                keys = accessors[input_idx].get("count", 0)
                outputs = accessors[output_idx].get("count", 0)
                per_key = 3 if interpolation == "CUBICSPLINE" else 1
                if TYPE_COMPONENTS.get(accessors[output_idx].get("type")) == 1:
                    # Morph weights: several outputs per key
                    continue
                if outputs != keys * per_key:
                    self.report.add_error(
                        "animation", f"{keys} keys but {outputs} output values", s_path
                    )

    def _gather_stats(self, data: bytes):
        stats = {key: self._count(key) for key in (
            "nodes", "meshes", "skins", "materials", "textures", "images", "animations",
        )}
        stats["size_bytes"] = len(data)
        stats["extensions_used"] = self.gltf.get("extensionsUsed", [])
        stats["generator"] = self.gltf.get("asset", {}).get("generator", "Unknown")
        self.report.stats = stats


def validate_glb(data: bytes, name: str = "") -> ValidationReport:
    """Validate GLB bytes"""
    return GlbValidator().validate(data, name)

"""
Source decoding and scene encoding

glTF/GLB sources are read in Python. FBX is a complex binary format, so FBX
sources are converted to GLB by Blender first (through the BlenderMCP addon
socket) and then read the same way. Blender and this process must share a
filesystem: the conversion script is given file paths, not bytes.

FBX Notes:
- Mixamo exports one action per file; animation-only files have an armature
  and no meshes, which the glTF exporter handles fine
- Blender's glTF exporter renames its keyword arguments between releases, so
  the conversion script drops any keyword the running version rejects
"""

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from ..blender_socket import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT, connection_settings, run_script
from ..errors import SourceParseError
from .files import LoadedFileHandle
from .gltf_io import GlbEncoder, parse_gltf_source
from .scene import ExportScene, ParsedSource

logger = logging.getLogger(__name__)


# Supported input formats
SUPPORTED_SOURCE_FORMATS = {
    '.fbx': 'FBX (Autodesk, converted by Blender)',
    '.glb': 'GLB (binary glTF)',
    '.gltf': 'glTF (embedded buffers)',
}


class SourceDecoder(Protocol):
    def decode(self, handle: LoadedFileHandle) -> ParsedSource:
        ...


class SceneEncoder(Protocol):
    def encode(self, scene: ExportScene) -> bytes:
        ...


@dataclass
class CodecSettings:
    """Blender connection and FBX import settings"""
    # Connection
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT

    # FBX import
    global_scale: float = 1.0
    import_animation: bool = True
    ignore_leaf_bones: bool = False
    automatic_bone_orientation: bool = False

    @classmethod
    def from_env(cls) -> "CodecSettings":
        """Connection settings from BLENDER_HOST, BLENDER_PORT, BLENDER_TIMEOUT"""
        return cls(**connection_settings())


class GltfCodec:
    """Decodes .glb/.gltf sources and encodes scenes as GLB, all in-process"""

    def __init__(self):
        self.encoder = GlbEncoder()

    @property
    def warnings(self):
        return self.encoder.warnings

    def decode(self, handle: LoadedFileHandle) -> ParsedSource:
        """
        Raises:
            SourceParseError: Unsupported extension or malformed asset
        """
        if handle.extension not in ('.glb', '.gltf'):
            raise SourceParseError(
                f"Unsupported format '{handle.extension}'. Supported: {', '.join(SUPPORTED_SOURCE_FORMATS)}",
                asset=handle.name,
            )
        return parse_gltf_source(handle.content_bytes, handle.name)

    def encode(self, scene: ExportScene) -> bytes:
        return self.encoder.encode(scene)


class BlenderCodec(GltfCodec):
    """
    GltfCodec that also accepts FBX, converting it with Blender.

    Pipeline for FBX:
    1. Write the bytes to a temp file (unless the handle came from disk)
    2. Import the FBX into a cleared Blender scene
    3. Export the imported objects as GLB to a temp file
    4. Read that GLB in Python

    Requires: Blender with the MCP addon running
    """

    def __init__(self, settings: Optional[CodecSettings] = None,
                 runner: Callable[..., Dict[str, Any]] = run_script):
        super().__init__()
        self.settings = settings or CodecSettings.from_env()
        self.runner = runner

    def decode(self, handle: LoadedFileHandle) -> ParsedSource:
        if handle.extension != '.fbx':
            return super().decode(handle)

        workdir = tempfile.mkdtemp(prefix="animerge_")
        try:
            input_path = handle.path
            if input_path is None or not os.path.exists(input_path):
                input_path = os.path.join(workdir, os.path.basename(handle.name))
                with open(input_path, 'wb') as f:
                    f.write(handle.content_bytes)
            output_path = os.path.join(workdir, "converted.glb")

            result = self._convert(input_path, output_path, handle.name)
            try:
                with open(output_path, 'rb') as f:
                    glb = f.read()
            except OSError as e:
                raise SourceParseError(f"Blender reported success but wrote no GLB: {e}", asset=handle.name) from e
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        parsed = parse_gltf_source(glb, handle.name)
        parsed.warnings = result.get("warnings", []) + parsed.warnings
        parsed.stats["imported"] = result.get("stats", {})
        return parsed

    def _convert(self, input_path: str, output_path: str, name: str) -> Dict[str, Any]:
        code = build_conversion_script(input_path, output_path, self.settings)
        try:
            result = self.runner(code, self.settings.host, self.settings.port, self.settings.timeout)
        except (ConnectionError, TimeoutError, OSError) as e:
            raise SourceParseError(
                f"Blender is not reachable at {self.settings.host}:{self.settings.port} ({e}); "
                f"it is needed to read FBX files",
                asset=name,
            ) from e
        except RuntimeError as e:
            raise SourceParseError(f"FBX conversion failed: {e}", asset=name) from e

        if result.get("error"):
            raise SourceParseError(f"FBX conversion failed: {result['error']}", asset=name)

        logger.info(f"Converted {name} with Blender: {result.get('stats', {})}")
        return result


def build_conversion_script(input_path: str, output_path: str, settings: CodecSettings) -> str:
    """Blender Python script that converts one FBX file to GLB and prints a JSON result"""
    import_kwargs = {
        "filepath": input_path,
        "global_scale": settings.global_scale,
        "use_anim": settings.import_animation,
        "ignore_leaf_bones": settings.ignore_leaf_bones,
        "automatic_bone_orientation": settings.automatic_bone_orientation,
    }
    export_kwargs = {
        "filepath": output_path,
        "export_format": "GLB",
        "use_selection": True,
        "export_animations": True,
        "export_skins": True,
        "export_materials": "EXPORT",
        "export_texcoords": True,
        "export_normals": True,
        "export_yup": True,
        "export_apply": False,
        "export_cameras": False,
        "export_lights": False,
    }

    # json.dumps gives Python-compatible literals for str/float; booleans
    # are fixed up with the replace calls
    def literal(kwargs: Dict[str, Any]) -> str:
        return json.dumps(kwargs).replace(": true", ": True").replace(": false", ": False")

    return f'''
import bpy
import json
import re

result = {{
    "success": False,
    "warnings": [],
    "stats": {{}},
    "error": None
}}

def call_with_known_kwargs(op, kwargs):
    # Drop keywords this Blender version does not recognize
    while True:
        try:
            return op(**kwargs)
        except TypeError as ex:
            m = re.search(r'keyword "([^"]+)" unrecognized', str(ex))
            if not m or m.group(1) not in kwargs:
                raise
            result["warnings"].append("Blender ignored option " + m.group(1))
            kwargs.pop(m.group(1))

try:
    # Clear scene
    bpy.ops.object.select_all(action='SELECT')
    bpy.ops.object.delete(use_global=False)
    for collection in (bpy.data.meshes, bpy.data.materials, bpy.data.images, bpy.data.armatures):
        for block in list(collection):
            if block.users == 0:
                collection.remove(block)
    # Leftover actions would be exported with this file
    for action in list(bpy.data.actions):
        bpy.data.actions.remove(action)

    pre_objects = set(obj.name for obj in bpy.data.objects)
    call_with_known_kwargs(bpy.ops.import_scene.fbx, {literal(import_kwargs)})
    new_objects = [obj for obj in bpy.data.objects if obj.name not in pre_objects]

    result["stats"] = {{
        "objects": len(new_objects),
        "meshes": sum(1 for obj in new_objects if obj.type == 'MESH'),
        "armatures": sum(1 for obj in new_objects if obj.type == 'ARMATURE'),
        "bones": sum(len(obj.data.bones) for obj in new_objects if obj.type == 'ARMATURE'),
        "actions": [action.name for action in bpy.data.actions],
    }}
    if not new_objects:
        raise RuntimeError("FBX contained no objects")

    bpy.ops.object.select_all(action='DESELECT')
    for obj in new_objects:
        obj.select_set(True)
    call_with_known_kwargs(bpy.ops.export_scene.gltf, {literal(export_kwargs)})

    # Leave the scene as we found it
    bpy.ops.object.delete(use_global=False)
    for action in list(bpy.data.actions):
        bpy.data.actions.remove(action)

    result["success"] = True

except Exception as e:
    result["error"] = str(e)

print(json.dumps(result))
'''

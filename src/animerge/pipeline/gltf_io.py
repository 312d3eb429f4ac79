"""
glTF 2.0 reading and GLB writing

Reading is done directly on the container bytes:
- GLB containers and .gltf files whose buffers are embedded ``data:`` URIs
- accessor decoding (float and normalized integer components, strided views)
- animations as Clips, materials as SourceMaterials

Writing builds a pygltflib GLTF2 document and lets pygltflib serialize it:
- re-encoding a model with new animations and materials (GlbEncoder)
- re-packing a .gltf with embedded buffers as a single-buffer GLB

GLB Format Notes:
- 12 byte header: magic "glTF", version 2, total length
- Chunks: uint32 length, uint32 type, payload padded to 4 bytes
- Unknown chunk types are skipped
"""

import base64
import copy
import io
import json
import logging
import struct
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from PIL import Image
from pygltflib import (
    FLOAT,
    GLTF2,
    Accessor,
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
    Buffer,
    BufferView,
    Material,
    NormalMaterialTexture,
    OcclusionTextureInfo,
    PbrMetallicRoughness,
    Sampler,
    Texture,
    TextureInfo,
)
from pygltflib import Image as GLTFImage

from ..clips import Clip, PropertyKind, Track
from ..errors import EncodeError, ImageDecodeError, InvalidTrackError, SourceParseError
from ..materials import (
    SLOT_BASE_COLOR,
    SLOT_EMISSIVE,
    SLOT_METALLIC,
    SLOT_NORMAL,
    SLOT_OCCLUSION,
    SLOT_ROUGHNESS,
    ColorSpace,
    MaterialDescriptor,
    SourceMaterial,
    TextureRef,
    decode_image,
    slot_color_space,
)
from .scene import ExportScene, ParsedSource

logger = logging.getLogger(__name__)


CHUNK_JSON = 0x4E4F534A  # "JSON"
CHUNK_BIN = 0x004E4942   # "BIN\0"

# componentType -> (struct format, byte size)
COMPONENT_FORMATS = {
    5120: ('b', 1),
    5121: ('B', 1),
    5122: ('h', 2),
    5123: ('H', 2),
    5125: ('I', 4),
    5126: ('f', 4),
}

# Divisors for normalized integer components
NORMALIZE_DIVISORS = {5120: 127.0, 5121: 255.0, 5122: 32767.0, 5123: 65535.0}

TYPE_COMPONENTS = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4, "MAT2": 4, "MAT3": 9, "MAT4": 16}

CHANNEL_PATHS = {
    "translation": PropertyKind.POSITION,
    "rotation": PropertyKind.ROTATION,
    "scale": PropertyKind.SCALE,
}
TRACK_PATHS = {kind: path for path, kind in CHANNEL_PATHS.items()}
TRACK_TYPES = {PropertyKind.POSITION: "VEC3", PropertyKind.ROTATION: "VEC4", PropertyKind.SCALE: "VEC3"}

EXT_UNLIT = "KHR_materials_unlit"
EXT_SPEC_GLOSS = "KHR_materials_pbrSpecularGlossiness"

# Image types a core glTF 2.0 reader accepts
GLTF_IMAGE_TYPES = ("image/png", "image/jpeg")

# LINEAR / LINEAR_MIPMAP_LINEAR / REPEAT
DEFAULT_SAMPLER = {"magFilter": 9729, "minFilter": 9987, "wrapS": 10497, "wrapT": 10497}


def _walk(node: Any, key: str) -> Iterator[Dict[str, Any]]:
    """Every dict below ``node`` that has ``key``"""
    if isinstance(node, dict):
        if key in node:
            yield node
        for value in node.values():
            yield from _walk(value, key)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item, key)


def _extension_names(node: Any) -> set:
    names = set()
    for holder in _walk(node, "extensions"):
        if isinstance(holder["extensions"], dict):
            names.update(holder["extensions"])
    return names


# ============================================================================
# Reading
# ============================================================================

@dataclass
class GltfDocument:
    """Parsed glTF JSON plus its binary chunk"""
    json: Dict[str, Any]
    binary: bytes = b""
    name: str = ""
    _buffers: Dict[int, bytes] = field(default_factory=dict, repr=False)

    def buffer_data(self, index: int) -> bytes:
        if index in self._buffers:
            return self._buffers[index]

        buffers = self.json.get("buffers", [])
        if not 0 <= index < len(buffers):
            raise SourceParseError(f"Invalid buffer index {index}", asset=self.name)

        uri = buffers[index].get("uri")
        if uri is None:
            data = self.binary
        elif uri.startswith("data:"):
            try:
                data = base64.b64decode(uri.split(",", 1)[1])
            except (IndexError, ValueError) as e:
                raise SourceParseError(f"Malformed data URI in buffer {index}", asset=self.name) from e
        else:
            raise SourceParseError(
                f"External buffer '{uri}' is not supported; use a .glb or a .gltf with embedded buffers",
                asset=self.name,
            )

        self._buffers[index] = data
        return data

    def view_data(self, index: int) -> Tuple[bytes, int]:
        """Bytes of a bufferView and its byteStride (0 when tightly packed)"""
        views = self.json.get("bufferViews", [])
        if index is None or not 0 <= index < len(views):
            raise SourceParseError(f"Invalid bufferView index {index}", asset=self.name)

        view = views[index]
        data = self.buffer_data(view.get("buffer", 0))
        start = view.get("byteOffset", 0)
        end = start + view.get("byteLength", 0)
        if end > len(data):
            raise SourceParseError(f"bufferView {index} runs past the end of its buffer", asset=self.name)
        return data[start:end], view.get("byteStride", 0)

    def node_names(self) -> List[str]:
        """Name per node; unnamed nodes are called ``node_<index>``"""
        return [node.get("name") or f"node_{i}" for i, node in enumerate(self.json.get("nodes", []))]

    def stats(self) -> Dict[str, int]:
        return {
            key: len(self.json.get(key, []))
            for key in ("nodes", "meshes", "skins", "materials", "textures", "animations")
        }


def read_gltf(data: bytes, name: str = "") -> GltfDocument:
    """
    Parse GLB or glTF JSON bytes.

    Raises:
        SourceParseError: If the bytes are neither
    """
    if data[:4] == b'glTF':
        return _read_glb(data, name)

    try:
        gltf = json.loads(data.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SourceParseError(f"Not a glTF or GLB file: {e}", asset=name) from e
    if not isinstance(gltf, dict) or "asset" not in gltf:
        raise SourceParseError("Not a glTF file: missing 'asset'", asset=name)
    return GltfDocument(gltf, b"", name)


def _read_glb(data: bytes, name: str) -> GltfDocument:
    if len(data) < 20:
        raise SourceParseError("Truncated GLB header", asset=name)

    _, version, total_length = struct.unpack_from('<III', data, 0)
    if version != 2:
        raise SourceParseError(f"Unsupported glTF version: {version}", asset=name)
    if total_length > len(data):
        raise SourceParseError(f"GLB declares {total_length} bytes but has {len(data)}", asset=name)

    gltf = None
    binary = b""
    offset = 12
    while offset + 8 <= total_length:
        chunk_length, chunk_type = struct.unpack_from('<II', data, offset)
        offset += 8
        chunk = data[offset:offset + chunk_length]
        if len(chunk) != chunk_length:
            raise SourceParseError("Truncated GLB chunk", asset=name)
        offset += chunk_length

        if chunk_type == CHUNK_JSON and gltf is None:
            try:
                gltf = json.loads(chunk.decode('utf-8'))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise SourceParseError(f"Invalid GLB JSON chunk: {e}", asset=name) from e
        elif chunk_type == CHUNK_BIN and not binary:
            binary = chunk
        # Unknown chunk types are skipped

    if not isinstance(gltf, dict):
        raise SourceParseError("GLB has no JSON chunk", asset=name)
    return GltfDocument(gltf, binary, name)


def read_accessor(doc: GltfDocument, index: int) -> List[float]:
    """
    Flattened component values of an accessor, as floats.

    Normalized integer accessors are mapped to [0, 1] / [-1, 1].

    Raises:
        SourceParseError: Bad index, unknown layout or out-of-range data
    """
    accessors = doc.json.get("accessors", [])
    if index is None or not 0 <= index < len(accessors):
        raise SourceParseError(f"Invalid accessor index {index}", asset=doc.name)

    accessor = accessors[index]
    try:
        component_type = accessor["componentType"]
        fmt, size = COMPONENT_FORMATS[component_type]
        components = TYPE_COMPONENTS[accessor["type"]]
        count = accessor["count"]
    except KeyError as e:
        raise SourceParseError(f"Accessor {index} is malformed: {e}", asset=doc.name) from e

    if "sparse" in accessor:
        raise SourceParseError(f"Sparse accessor {index} is not supported", asset=doc.name)
    if "bufferView" not in accessor:
        return [0.0] * (count * components)

    data, stride = doc.view_data(accessor["bufferView"])
    offset = accessor.get("byteOffset", 0)
    element = struct.Struct(f'<{components}{fmt}')
    stride = stride or element.size
    if count and offset + stride * (count - 1) + element.size > len(data):
        raise SourceParseError(f"Accessor {index} runs past the end of its bufferView", asset=doc.name)

    values: List[float] = []
    for i in range(count):
        values.extend(element.unpack_from(data, offset + i * stride))

    if accessor.get("normalized") and component_type in NORMALIZE_DIVISORS:
        divisor = NORMALIZE_DIVISORS[component_type]
        return [max(v / divisor, -1.0) for v in values]
    return [float(v) for v in values]


def _cubic_spline_values(values: List[float], stride: int) -> List[float]:
    # Each key is (in-tangent, value, out-tangent)
    result = []
    for start in range(0, len(values), stride * 3):
        result.extend(values[start + stride:start + 2 * stride])
    return result


def extract_clips(doc: GltfDocument) -> Tuple[List[Clip], List[str]]:
    """
    Read every animation as a Clip.

    Tracks target nodes by name. Morph-target ``weights`` channels are
    skipped; CUBICSPLINE keys keep their values and lose their tangents.
    A clip's duration is its latest keyframe time.

    Returns:
        (clips, warnings)
    """
    names = doc.node_names()
    clips: List[Clip] = []
    warnings: List[str] = []

    for i, animation in enumerate(doc.json.get("animations", [])):
        clip_name = animation.get("name") or f"Animation_{i}"
        samplers = animation.get("samplers", [])
        tracks: List[Track] = []
        duration = 0.0

        for j, channel in enumerate(animation.get("channels", [])):
            target = channel.get("target", {})
            kind = CHANNEL_PATHS.get(target.get("path"))
            if kind is None:
                warnings.append(f"{clip_name}: skipped '{target.get('path')}' channel {j}")
                continue
            node = target.get("node")
            if node is None or not 0 <= node < len(names):
                warnings.append(f"{clip_name}: channel {j} has no valid target node")
                continue
            sampler_index = channel.get("sampler")
            if sampler_index is None or not 0 <= sampler_index < len(samplers):
                raise SourceParseError(f"{clip_name}: channel {j} has an invalid sampler", asset=doc.name)

            sampler = samplers[sampler_index]
            times = read_accessor(doc, sampler.get("input"))
            values = read_accessor(doc, sampler.get("output"))
            if sampler.get("interpolation") == "CUBICSPLINE":
                values = _cubic_spline_values(values, kind.stride)
                warnings.append(f"{clip_name}: cubic spline channel {j} resampled as linear")

            try:
                tracks.append(Track(names[node], kind, times, values))
            except InvalidTrackError as e:
                raise SourceParseError(f"{clip_name}: {e}", asset=doc.name) from e
            if times:
                duration = max(duration, max(times))

        clips.append(Clip(clip_name, tracks, duration))

    return clips, warnings


def image_bytes(doc: GltfDocument, index: int) -> Tuple[bytes, str]:
    """Raw bytes and name of an image"""
    image = doc.json.get("images", [])[index]
    name = image.get("name") or f"image_{index}"

    if "bufferView" in image:
        data, _ = doc.view_data(image["bufferView"])
        return data, name

    uri = image.get("uri", "")
    if uri.startswith("data:"):
        try:
            return base64.b64decode(uri.split(",", 1)[1]), name
        except (IndexError, ValueError) as e:
            raise SourceParseError(f"Malformed data URI in image {index}", asset=doc.name) from e
    raise SourceParseError(f"External image '{uri}' is not supported", asset=doc.name)


def _rgba(value: Any, material: str) -> Tuple[float, float, float, float]:
    if not isinstance(value, list) or len(value) != 4:
        raise SourceParseError(f"Material '{material}' has a malformed color factor")
    return tuple(float(c) for c in value)


def extract_materials(
    doc: GltfDocument,
    decode: Callable[[bytes, str], TextureRef] = decode_image,
) -> Tuple[List[SourceMaterial], List[str]]:
    """
    Read every material as a SourceMaterial, in document order.

    - KHR_materials_unlit -> flat color
    - KHR_materials_pbrSpecularGlossiness -> diffuse lighting
    - everything else -> metallic-roughness

    Each image is decoded once per color space: every color use of it shares
    one TextureRef and every data use shares another, so no TextureRef is
    ever needed as both sRGB and linear. Images that cannot be read are
    skipped with a warning.

    Returns:
        (materials, warnings)
    """
    textures = doc.json.get("textures", [])
    images = doc.json.get("images", [])
    decoded: Dict[Tuple[int, ColorSpace], Optional[TextureRef]] = {}
    warnings: List[str] = []

    def texture_ref(info: Optional[Dict[str, Any]], slot: str) -> Optional[TextureRef]:
        if not info:
            return None
        texture_index = info.get("index")
        if texture_index is None or not 0 <= texture_index < len(textures):
            warnings.append(f"Invalid texture index {texture_index}")
            return None
        source = textures[texture_index].get("source")
        if source is None or not 0 <= source < len(images):
            warnings.append(f"Texture {texture_index} has no image this reader supports")
            return None
        key = (source, slot_color_space(slot))
        if key not in decoded:
            try:
                data, name = image_bytes(doc, source)
                decoded[key] = decode(data, name)
            except (SourceParseError, ImageDecodeError) as e:
                warnings.append(str(e))
                decoded[key] = None
        return decoded[key]

    materials: List[SourceMaterial] = []
    for i, mat in enumerate(doc.json.get("materials", [])):
        name = mat.get("name") or f"Material_{i}"
        extensions = mat.get("extensions", {})
        transparent = mat.get("alphaMode") == "BLEND"

        if EXT_SPEC_GLOSS in extensions:
            spec_gloss = extensions[EXT_SPEC_GLOSS]
            base_color = _rgba(spec_gloss.get("diffuseFactor", [1.0, 1.0, 1.0, 1.0]), name)
            source = SourceMaterial(
                name,
                diffuse_lighting=True,
                base_color=base_color,
                transparent=transparent,
                opacity=base_color[3],
                base_color_map=texture_ref(spec_gloss.get("diffuseTexture"), SLOT_BASE_COLOR),
            )
        else:
            pbr = mat.get("pbrMetallicRoughness")
            pbr_block = pbr or {}
            unlit = EXT_UNLIT in extensions
            base_color = _rgba(pbr_block.get("baseColorFactor", [1.0, 1.0, 1.0, 1.0]), name)
            source = SourceMaterial(
                name,
                flat_color_only=unlit,
                metallic_roughness=not unlit,
                base_color=base_color,
                transparent=transparent,
                opacity=base_color[3],
                base_color_map=texture_ref(pbr_block.get("baseColorTexture"), SLOT_BASE_COLOR),
            )
            if pbr is not None and not unlit:
                # glTF defaults both factors to 1 when the block is present
                source.metalness = float(pbr.get("metallicFactor", 1.0))
                source.roughness = float(pbr.get("roughnessFactor", 1.0))
                metal_rough = texture_ref(pbr.get("metallicRoughnessTexture"), SLOT_METALLIC)
                if metal_rough is not None:
                    source.data_maps[SLOT_METALLIC] = metal_rough
                    source.data_maps[SLOT_ROUGHNESS] = metal_rough

        for slot, key in ((SLOT_NORMAL, "normalTexture"), (SLOT_OCCLUSION, "occlusionTexture")):
            ref = texture_ref(mat.get(key), slot)
            if ref is not None:
                source.data_maps[slot] = ref

        emissive = mat.get("emissiveFactor", [0.0, 0.0, 0.0])
        source.emissive = tuple(float(c) for c in emissive[:3])
        source.emissive_map = texture_ref(mat.get("emissiveTexture"), SLOT_EMISSIVE)
        materials.append(source)

    return materials, warnings


def parse_gltf_source(data: bytes, name: str,
                      decode: Callable[[bytes, str], TextureRef] = decode_image) -> ParsedSource:
    """
    Decode a .glb/.gltf into clips, materials and canonical GLB bytes.

    Raises:
        SourceParseError: Malformed container, accessor or animation data
    """
    doc = read_gltf(data, name)
    clips, clip_warnings = extract_clips(doc)
    materials, material_warnings = extract_materials(doc, decode)
    glb = data if data[:4] == b'glTF' else to_glb(doc)

    parsed = ParsedSource(
        clips=clips,
        materials=materials,
        warnings=clip_warnings + material_warnings,
        stats=doc.stats(),
        glb=glb,
    )
    for warning in parsed.warnings:
        logger.warning(f"{name}: {warning}")
    return parsed


# ============================================================================
# Writing
# ============================================================================

class _BinaryBuilder:
    """Packs bufferViews into the single binary chunk of a GLTF2 document"""

    def __init__(self):
        self.views: List[BufferView] = []
        self.blob = bytearray()

    def add_view(self, data: bytes, byte_stride: Optional[int] = None, target: Optional[int] = None) -> int:
        self.views.append(BufferView(
            buffer=0, byteOffset=len(self.blob), byteLength=len(data), byteStride=byte_stride, target=target,
        ))
        self.blob.extend(data)
        while len(self.blob) % 4:
            self.blob.append(0)
        return len(self.views) - 1

    def add_float_accessor(self, accessors: List[Accessor], values: List[float],
                           accessor_type: str, bounds: bool = False) -> int:
        components = TYPE_COMPONENTS[accessor_type]
        accessor = Accessor(
            bufferView=self.add_view(struct.pack(f'<{len(values)}f', *values)),
            componentType=FLOAT,
            count=len(values) // components,
            type=accessor_type,
        )
        if bounds:
            accessor.min = [min(values[c::components]) for c in range(components)]
            accessor.max = [max(values[c::components]) for c in range(components)]
        accessors.append(accessor)
        return len(accessors) - 1

    def finish(self, gltf: GLTF2) -> bytes:
        """Attach the packed views to ``gltf`` and serialize it as GLB"""
        gltf.bufferViews = self.views
        if self.blob:
            gltf.buffers = [Buffer(byteLength=len(self.blob))]
            gltf.set_binary_blob(bytes(self.blob))
        else:
            gltf.buffers = []
        return b"".join(gltf.save_to_bytes())


def _copy_views(doc: GltfDocument, builder: _BinaryBuilder, indices) -> Dict[int, int]:
    """Copy the given bufferViews of ``doc`` into ``builder``; old index -> new index"""
    views = doc.json.get("bufferViews", [])
    view_map = {}
    for old in sorted(indices):
        data, stride = doc.view_data(old)
        view_map[old] = builder.add_view(data, byte_stride=stride or None, target=views[old].get("target"))
    return view_map


def to_glb(doc: GltfDocument) -> bytes:
    """Re-pack a document, whatever its buffer layout, as a single-buffer GLB"""
    gltf = copy.deepcopy(doc.json)
    gltf.pop("buffers", None)
    gltf.pop("bufferViews", None)

    builder = _BinaryBuilder()
    view_map = _copy_views(doc, builder, range(len(doc.json.get("bufferViews", []))))
    for ref in _walk(gltf, "bufferView"):
        ref["bufferView"] = view_map[ref["bufferView"]]
    return builder.finish(GLTF2.from_dict(gltf))


def pack_metallic_roughness(metallic: Optional[TextureRef], roughness: Optional[TextureRef]) -> bytes:
    """
    Build a glTF metallicRoughness PNG (G = roughness, B = metallic) from
    two separate maps.

    Each map is read from its ORM channel, so grayscale maps and packed
    images both work. A missing map reads as white so its scalar factor
    applies unchanged. The smaller map is resized to the larger one.
    """
    opened = {}
    for slot, ref in ((SLOT_METALLIC, metallic), (SLOT_ROUGHNESS, roughness)):
        if ref is not None:
            with Image.open(io.BytesIO(ref.image_data)) as img:
                opened[slot] = img.convert("RGB")

    size = max((img.size for img in opened.values()), key=lambda s: s[0] * s[1])

    def band(slot: str, channel: str) -> Image.Image:
        img = opened.get(slot)
        if img is None:
            return Image.new("L", size, 255)
        if img.size != size:
            img = img.resize(size, Image.Resampling.BILINEAR)
        return img.getchannel(channel)

    merged = Image.merge("RGB", (
        Image.new("L", size, 255),
        band(SLOT_ROUGHNESS, "G"),
        band(SLOT_METALLIC, "B"),
    ))
    out = io.BytesIO()
    merged.save(out, format="PNG")
    return out.getvalue()


class _TextureTable:
    """Embeds each image once and hands out texture indices"""

    def __init__(self, gltf: GLTF2, builder: _BinaryBuilder):
        self.gltf = gltf
        self.builder = builder
        self.indices: Dict[Any, int] = {}

    def _add(self, key: Any, data: bytes, mime_type: str, name: str) -> int:
        if key in self.indices:
            return self.indices[key]

        if not self.gltf.samplers:
            self.gltf.samplers = [Sampler(**DEFAULT_SAMPLER)]
        self.gltf.images.append(GLTFImage(name=name, mimeType=mime_type, bufferView=self.builder.add_view(data)))
        self.gltf.textures.append(Texture(sampler=0, source=len(self.gltf.images) - 1))
        self.indices[key] = len(self.gltf.textures) - 1
        return self.indices[key]

    def ref(self, ref: TextureRef) -> int:
        if ref.disposed:
            raise EncodeError(f"Texture '{ref.name}' was released before export")
        if id(ref) in self.indices:
            return self.indices[id(ref)]

        data, mime_type = ref.image_data, ref.mime_type
        if mime_type not in GLTF_IMAGE_TYPES:
            with Image.open(io.BytesIO(data)) as img:
                out = io.BytesIO()
                img.save(out, format="PNG")
            data, mime_type = out.getvalue(), "image/png"
        return self._add(id(ref), data, mime_type, ref.name)

    def metallic_roughness(self, metallic: Optional[TextureRef], roughness: Optional[TextureRef],
                           name: str) -> int:
        for ref in (metallic, roughness):
            if ref is not None and ref.disposed:
                raise EncodeError(f"Texture '{ref.name}' was released before export")
        key = ("metallicRoughness", id(metallic), id(roughness))
        if key in self.indices:
            return self.indices[key]
        return self._add(key, pack_metallic_roughness(metallic, roughness), "image/png", name)


class GlbEncoder:
    """
    Rebuilds the target model's GLB with the session's clips and materials.

    Nodes, meshes and skins are kept. Animations, textures, images and
    samplers are replaced; accessors and bufferViews nothing references any
    more are dropped and the binary chunk is re-packed.

    The scene's materials replace the model's materials by position, so the
    scene must hold exactly one descriptor per model material.
    """

    def __init__(self, generator: str = "animerge"):
        self.generator = generator
        self.warnings: List[str] = []

    def encode(self, scene: ExportScene) -> bytes:
        """
        Raises:
            EncodeError: The model cannot be read or the scene does not fit it
        """
        self.warnings = []
        model = scene.model
        try:
            doc = read_gltf(model.glb, model.name)
        except SourceParseError as e:
            raise EncodeError(f"Target model is not a readable GLB: {e}", asset=model.name) from e

        kept = copy.deepcopy(doc.json)
        old_materials = kept.get("materials", [])
        if len(scene.materials) != len(old_materials):
            raise EncodeError(
                f"Scene has {len(scene.materials)} materials, model has {len(old_materials)}",
                asset=model.name,
            )

        replaced = ("materials", "animations", "textures", "images", "samplers")
        replaced_extensions = _extension_names([kept.get(key, []) for key in replaced])
        for key in replaced + ("buffers", "bufferViews"):
            kept.pop(key, None)

        # Drop extensions only the replaced parts used
        still_used = _extension_names(
            {k: v for k, v in kept.items() if k not in ("extensionsUsed", "extensionsRequired")}
        )
        for key in ("extensionsUsed", "extensionsRequired"):
            if key in kept:
                kept[key] = [e for e in kept[key] if e not in replaced_extensions or e in still_used]

        builder = _BinaryBuilder()
        try:
            self._repack_geometry(doc, kept, builder)
            gltf = GLTF2.from_dict(kept)
            gltf.bufferViews = builder.views

            textures = _TextureTable(gltf, builder)
            gltf.materials = [
                self._material(descriptor, old, textures)
                for descriptor, old in zip(scene.materials, old_materials)
            ]

            nodes: Dict[str, int] = {}
            for i, name in enumerate(doc.node_names()):
                nodes.setdefault(name, i)
            animations = [self._animation(clip, gltf, builder, nodes) for clip in scene.clips]
        except SourceParseError as e:
            raise EncodeError(f"Target model is malformed: {e}", asset=model.name) from e
        except (KeyError, IndexError, TypeError) as e:
            raise EncodeError(f"Target model is malformed: {e!r}", asset=model.name) from e
        except (OSError, ValueError) as e:
            raise EncodeError(f"Failed to embed texture: {e}", asset=model.name) from e

        gltf.animations = [a for a in animations if a is not None]
        gltf.asset.generator = self.generator

        for warning in self.warnings:
            logger.warning(f"{model.name}: {warning}")
        return builder.finish(gltf)

    @staticmethod
    def _repack_geometry(doc: GltfDocument, gltf: Dict[str, Any], builder: _BinaryBuilder):
        old_accessors = gltf.get("accessors", [])
        meshes = gltf.get("meshes", [])
        skins = gltf.get("skins", [])

        used = set()
        for mesh in meshes:
            for prim in mesh.get("primitives", []):
                used.update(prim.get("attributes", {}).values())
                if "indices" in prim:
                    used.add(prim["indices"])
                for target in prim.get("targets", []):
                    used.update(target.values())
        for skin in skins:
            if "inverseBindMatrices" in skin:
                used.add(skin["inverseBindMatrices"])

        accessor_map = {old: new for new, old in enumerate(sorted(used))}
        for mesh in meshes:
            for prim in mesh.get("primitives", []):
                prim["attributes"] = {k: accessor_map[v] for k, v in prim.get("attributes", {}).items()}
                if "indices" in prim:
                    prim["indices"] = accessor_map[prim["indices"]]
                if "targets" in prim:
                    prim["targets"] = [{k: accessor_map[v] for k, v in t.items()} for t in prim["targets"]]
        for skin in skins:
            if "inverseBindMatrices" in skin:
                skin["inverseBindMatrices"] = accessor_map[skin["inverseBindMatrices"]]

        accessors = [old_accessors[i] for i in sorted(used)]
        gltf["accessors"] = accessors

        # Views referenced by accessors, sparse storage and compressed meshes
        view_refs = list(_walk(accessors, "bufferView")) + list(_walk(meshes, "bufferView"))
        view_map = _copy_views(doc, builder, {ref["bufferView"] for ref in view_refs})
        for ref in view_refs:
            ref["bufferView"] = view_map[ref["bufferView"]]

    @staticmethod
    def _material(descriptor: MaterialDescriptor, original: Dict[str, Any],
                  textures: _TextureTable) -> Material:
        maps = descriptor.maps
        r, g, b = descriptor.base_color[:3]
        pbr = PbrMetallicRoughness(
            baseColorFactor=[r, g, b, descriptor.opacity],
            metallicFactor=descriptor.metalness,
            roughnessFactor=descriptor.roughness,
        )
        material = Material(
            name=descriptor.name,
            pbrMetallicRoughness=pbr,
            doubleSided=bool(original.get("doubleSided", False)),
            alphaCutoff=None,
        )
        if "extras" in original:
            material.extras = original["extras"]

        if maps[SLOT_BASE_COLOR] is not None:
            pbr.baseColorTexture = TextureInfo(index=textures.ref(maps[SLOT_BASE_COLOR]))

        metallic, roughness = maps[SLOT_METALLIC], maps[SLOT_ROUGHNESS]
        if metallic is not None and metallic is roughness:
            pbr.metallicRoughnessTexture = TextureInfo(index=textures.ref(metallic))
        elif metallic is not None or roughness is not None:
            index = textures.metallic_roughness(metallic, roughness, f"{descriptor.name}_metallicRoughness")
            pbr.metallicRoughnessTexture = TextureInfo(index=index)

        if maps[SLOT_NORMAL] is not None:
            material.normalTexture = NormalMaterialTexture(
                index=textures.ref(maps[SLOT_NORMAL]), scale=descriptor.normal_scale,
            )
        if maps[SLOT_OCCLUSION] is not None:
            material.occlusionTexture = OcclusionTextureInfo(
                index=textures.ref(maps[SLOT_OCCLUSION]), strength=descriptor.occlusion_strength,
            )
        if maps[SLOT_EMISSIVE] is not None:
            material.emissiveTexture = TextureInfo(index=textures.ref(maps[SLOT_EMISSIVE]))
        material.emissiveFactor = list(descriptor.emissive)

        if descriptor.transparent:
            material.alphaMode = "BLEND"
        elif original.get("alphaMode") == "MASK":
            material.alphaMode = "MASK"
            material.alphaCutoff = original.get("alphaCutoff", 0.5)
        else:
            material.alphaMode = "OPAQUE"
        return material

    def _animation(self, clip: Clip, gltf: GLTF2, builder: _BinaryBuilder,
                   nodes: Dict[str, int]) -> Optional[Animation]:
        channels, samplers = [], []
        inputs: Dict[Tuple[float, ...], int] = {}

        for track in clip.tracks:
            if not track.keyframe_times:
                continue
            node = nodes.get(track.target_node_id)
            if node is None:
                self.warnings.append(f"{clip.name}: model has no node '{track.target_node_id}'")
                continue

            times = tuple(track.keyframe_times)
            if times not in inputs:
                inputs[times] = builder.add_float_accessor(gltf.accessors, list(times), "SCALAR", bounds=True)
            output = builder.add_float_accessor(
                gltf.accessors, track.keyframe_values, TRACK_TYPES[track.property_kind]
            )
            samplers.append(AnimationSampler(input=inputs[times], output=output, interpolation="LINEAR"))
            channels.append(AnimationChannel(
                sampler=len(samplers) - 1,
                target=AnimationChannelTarget(node=node, path=TRACK_PATHS[track.property_kind]),
            ))

        if not channels:
            self.warnings.append(f"Clip '{clip.name}' animates no node of this model and was left out")
            return None
        return Animation(name=clip.name, channels=channels, samplers=samplers)

"""Shared fixtures: small PNG images and a minimal skinned-looking GLB model"""

import io
import json
import struct

import pytest
from PIL import Image


def write_glb(gltf, binary=b""):
    """Frame glTF JSON and an optional BIN chunk as GLB, exactly as given"""
    json_bytes = json.dumps(gltf).encode("utf-8")
    json_bytes += b" " * (-len(json_bytes) % 4)
    chunks = [struct.pack("<II", len(json_bytes), 0x4E4F534A), json_bytes]
    if binary:
        binary += b"\x00" * (-len(binary) % 4)
        chunks += [struct.pack("<II", len(binary), 0x004E4942), binary]
    body = b"".join(chunks)
    return struct.pack("<III", 0x46546C67, 2, 12 + len(body)) + body


def make_png(color=(255, 0, 0), size=(4, 4), mode="RGB") -> bytes:
    out = io.BytesIO()
    Image.new(mode, size, color).save(out, format="PNG")
    return out.getvalue()


def _floats(values) -> bytes:
    return struct.pack(f'<{len(values)}f', *values)


def make_model_glb(animation_name="Walk", root_node="Hips", image: bytes = None,
                   materials=None) -> bytes:
    """
    One triangle mesh under a root node, one material and one translation
    animation on the root node.
    """
    positions = _floats([0, 0, 0, 1, 0, 0, 0, 1, 0])
    times = _floats([0.0, 0.5, 1.0])
    translations = _floats([0, 0, 0, 1, 0.5, 2, 2, 0, 4])

    binary = positions + times + translations
    views = [
        {"buffer": 0, "byteOffset": 0, "byteLength": 36},
        {"buffer": 0, "byteOffset": 36, "byteLength": 12},
        {"buffer": 0, "byteOffset": 48, "byteLength": 36},
    ]
    gltf = {
        "asset": {"version": "2.0", "generator": "fixture"},
        "scene": 0,
        "scenes": [{"nodes": [0]}],
        "nodes": [
            {"name": root_node, "children": [1]},
            {"name": "Body", "mesh": 0},
        ],
        "meshes": [{"primitives": [{"attributes": {"POSITION": 0}, "material": 0}]}],
        "materials": materials or [{
            "name": "Skin",
            "pbrMetallicRoughness": {
                "baseColorFactor": [1.0, 0.5, 0.5, 1.0],
                "metallicFactor": 0.2,
                "roughnessFactor": 0.7,
            },
        }],
        "accessors": [
            {"bufferView": 0, "componentType": 5126, "count": 3, "type": "VEC3",
             "min": [0, 0, 0], "max": [1, 1, 0]},
            {"bufferView": 1, "componentType": 5126, "count": 3, "type": "SCALAR",
             "min": [0.0], "max": [1.0]},
            {"bufferView": 2, "componentType": 5126, "count": 3, "type": "VEC3"},
        ],
        "bufferViews": views,
        "animations": [{
            "name": animation_name,
            "channels": [{"sampler": 0, "target": {"node": 0, "path": "translation"}}],
            "samplers": [{"input": 1, "output": 2, "interpolation": "LINEAR"}],
        }],
    }

    if image is not None:
        views.append({"buffer": 0, "byteOffset": len(binary), "byteLength": len(image)})
        binary += image
        gltf["images"] = [{"name": "albedo", "mimeType": "image/png", "bufferView": 3}]
        gltf["textures"] = [{"source": 0}]
        gltf["materials"][0]["pbrMetallicRoughness"]["baseColorTexture"] = {"index": 0}

    gltf["buffers"] = [{"byteLength": len(binary)}]
    return write_glb(gltf, binary)


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def model_glb():
    return make_model_glb()

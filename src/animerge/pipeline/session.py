"""
Session

Owns everything attached to one target model: its clip registry, preview
player, normalized materials and the user's pending textures.

Decoding (sources and images) runs in worker threads; every registry or
material mutation happens on the event loop after the await, so each one
is applied in full before the next starts. A failed load changes nothing.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..clips import Clip, ClipPlayer, ClipRegistry
from ..errors import AnimergeError, EncodeError
from ..materials import (
    MaterialDescriptor,
    TextureMode,
    TextureRef,
    TextureSet,
    TextureSlotBinder,
    decode_image,
    normalize_material,
)
from ..materials.textures import check_slot
from .codec import BlenderCodec, SceneEncoder, SourceDecoder
from .export import ExportCoordinator, ExportReport
from .files import FileAccessProvider, LoadedFileHandle, LocalFileProvider
from .scene import ExportScene, TargetModel, clip_summary

logger = logging.getLogger(__name__)


@dataclass
class SourceResult:
    """Outcome of loading one source file"""
    name: str
    success: bool
    clips: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "clips": self.clips,
            "warnings": self.warnings,
            "error": self.error,
        }


class Session:
    """
    One editing session.

    Args:
        decoder: Turns source files into clips and materials (default: BlenderCodec)
        encoder: Turns the final scene into GLB bytes (default: the decoder, if it encodes)
        provider: Where exports are written (default: LocalFileProvider)
    """

    def __init__(self, decoder: Optional[SourceDecoder] = None, encoder: Optional[SceneEncoder] = None,
                 provider: Optional[FileAccessProvider] = None):
        codec = None
        if decoder is None or encoder is None:
            codec = BlenderCodec()
        self.decoder = decoder or codec
        self.encoder = encoder or codec
        self.provider = provider or LocalFileProvider()

        self.model: Optional[TargetModel] = None
        self.registry = ClipRegistry()
        self.player = ClipPlayer()
        self.materials: List[MaterialDescriptor] = []
        self.texture_set = TextureSet()
        self.binder = TextureSlotBinder()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def load_model(self, handle: LoadedFileHandle) -> SourceResult:
        """
        Replace the target model.

        The model's own clips keep their names. Its materials are normalized
        and the pending texture set is applied to them.

        Raises:
            AnimergeError: Decoding or normalization failed; the previous
                model is untouched
        """
        parsed = await asyncio.to_thread(self.decoder.decode, handle)

        descriptors: List[MaterialDescriptor] = []
        try:
            for source in parsed.materials:
                descriptors.append(normalize_material(source))
            for descriptor in descriptors:
                self.binder.apply_texture_set(descriptor, self.texture_set)
        except AnimergeError:
            for descriptor in descriptors:
                self.binder.release_all(descriptor)
            raise

        self._teardown_model()
        self.model = TargetModel(handle.label or handle.name, handle, parsed.glb, dict(parsed.stats))
        self.materials = descriptors
        added = self.registry.add_from_source(parsed.clips)

        logger.info(f"Model loaded: {handle.name} ({len(added)} clip(s), {len(descriptors)} material(s))")
        return SourceResult(handle.name, True, [c.name for c in added], list(parsed.warnings))

    async def add_animations(self, handles: Iterable[LoadedFileHandle]) -> List[SourceResult]:
        """
        Decode animation sources concurrently and append their clips.

        Each source's clips are named after the file (up to the first dot)
        and appended as soon as that source finishes decoding, so the final
        order follows completion, not submission. If no model is loaded yet,
        the first handle is loaded as the model instead.

        Returns:
            One SourceResult per handle; failures are reported, not raised
        """
        handles = list(handles)
        results: List[SourceResult] = []

        if self.model is None and handles:
            first = handles.pop(0)
            try:
                results.append(await self.load_model(first))
            except AnimergeError as e:
                logger.error(f"Failed to load {first.name}: {e}")
                results.append(SourceResult(first.name, False, error=str(e)))

        async def add(handle: LoadedFileHandle):
            try:
                parsed = await asyncio.to_thread(self.decoder.decode, handle)
            except AnimergeError as e:
                logger.error(f"Failed to load {handle.name}: {e}")
                results.append(SourceResult(handle.name, False, error=str(e)))
                return
            added = self.registry.add_from_source(parsed.clips, handle.label)
            results.append(SourceResult(handle.name, True, [c.name for c in added], list(parsed.warnings)))

        await asyncio.gather(*(add(handle) for handle in handles))
        return results

    # ------------------------------------------------------------------
    # Clips
    # ------------------------------------------------------------------

    def list_clips(self) -> List[Dict[str, Any]]:
        return [clip_summary(clip, i) for i, clip in enumerate(self.registry.active_clips)]

    def rename_clip(self, index: int, new_name: str) -> str:
        return self.registry.rename(index, new_name)

    def delete_clip(self, index: int) -> Clip:
        clip = self.registry.delete(index)
        if self.player.clip is not None and self.player.clip.uid == clip.uid:
            self.player.stop()
        return clip

    def move_clip(self, from_index: int, to_index: int):
        self.registry.reorder(from_index, to_index)

    def set_in_place(self, enabled: bool) -> List[Clip]:
        """Toggle root-motion removal on every clip"""
        return self.registry.set_root_motion_mode(enabled, self.player)

    def play_clip(self, index: int) -> Clip:
        if not 0 <= index < len(self.registry):
            raise IndexError(f"Clip index {index} out of range (0-{len(self.registry) - 1})")
        clip = self.registry.active_clips[index]
        self.player.play(clip)
        return clip

    def step_preview(self, seconds: float = 0.0, seek_percent: Optional[float] = None,
                     paused: Optional[bool] = None) -> Dict[str, Any]:
        """
        Drive the preview player: pause or resume, then seek, then advance by
        ``seconds`` of wall time. Returns the player status.

        Raises:
            ValueError: No clip is playing
        """
        player = self.player
        if player.clip is None:
            raise ValueError("No clip is playing; start one with play_clip")

        if paused is True:
            player.pause()
        elif paused is False:
            player.resume()
        if seek_percent is not None:
            player.seek(seek_percent)
        if seconds:
            player.advance(seconds)
        return self.preview_status()

    def preview_status(self) -> Dict[str, Any]:
        player = self.player
        return {
            "clip": player.clip.name if player.clip is not None else None,
            "state": player.state.value,
            "loop_mode": player.loop_mode.value,
            "speed": player.time_scale,
            "paused": player.paused,
            "progress": player.progress(),
        }

    # ------------------------------------------------------------------
    # Textures
    # ------------------------------------------------------------------

    async def load_texture(self, slot: str, handle: LoadedFileHandle) -> TextureRef:
        """
        Decode an image and bind it to ``slot`` on every material.

        Raises:
            InvalidSlotError: Unknown slot (checked before decoding)
            ImageDecodeError: The bytes are not an image
        """
        check_slot(slot)
        ref = await asyncio.to_thread(decode_image, handle.content_bytes, handle.name)

        previous = self.texture_set.separate.get(slot)
        ref.hold()
        self.texture_set.separate[slot] = ref
        self._apply_texture_set()
        if previous is not None:
            previous.drop()

        logger.info(f"Texture '{handle.name}' loaded into {slot}")
        return ref

    async def load_packed_texture(self, handle: LoadedFileHandle) -> TextureRef:
        """Decode an ORM image, switch to packed mode and bind it to every material"""
        ref = await asyncio.to_thread(decode_image, handle.content_bytes, handle.name)

        previous = self.texture_set.packed
        ref.hold()
        self.texture_set.packed = ref
        self.texture_set.mode = TextureMode.PACKED
        self._apply_texture_set()
        if previous is not None:
            previous.drop()

        logger.info(f"Packed ORM texture '{handle.name}' loaded")
        return ref

    def set_packed_mode(self, enabled: bool):
        """Switch every material between the packed ORM image and separate maps"""
        self.texture_set.mode = TextureMode.PACKED if enabled else TextureMode.SEPARATE
        self._apply_texture_set()

    def list_materials(self) -> List[Dict[str, Any]]:
        return [descriptor.to_dict() for descriptor in self.materials]

    def _apply_texture_set(self):
        for descriptor in self.materials:
            self.binder.apply_texture_set(descriptor, self.texture_set)

    # ------------------------------------------------------------------
    # Export / teardown
    # ------------------------------------------------------------------

    def export(self, filename: Optional[str] = None) -> ExportReport:
        """
        Raises:
            EncodeError: No model loaded, or the encoder failed
        """
        if self.model is None:
            raise EncodeError("No model loaded")
        scene = ExportScene(self.model, list(self.registry.active_clips), list(self.materials))
        return ExportCoordinator(self.encoder, self.provider).export(scene, filename)

    def _teardown_model(self):
        self.player.stop()
        for descriptor in self.materials:
            self.binder.release_all(descriptor)
        self.materials = []
        self.registry.clear()
        self.model = None

    def close(self):
        """Release every texture and forget the model"""
        self._teardown_model()
        for ref in self.texture_set.refs():
            ref.drop()
        self.texture_set = TextureSet()
        logger.info("Session closed")

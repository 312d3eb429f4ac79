"""
Clip Registry

Ordered collection of the clips attached to the target model.

Two lists are kept:
- ``original_clips``: clips exactly as loaded, in insertion order. Only
  rename touches them after they are added.
- ``active_clips``: what is previewed and exported. Always derived from the
  originals, with or without root-motion removal, in the user's view order.

An original and its active copy share a ``uid``, so operations match the two
by identity rather than by index.
"""

import logging
import uuid
from typing import Dict, List, Optional

from .processor import ClipPlayer, apply_root_motion_removal
from .tracks import Clip

logger = logging.getLogger(__name__)


class ClipRegistry:
    """Owns the original and active clip lists for one target model"""

    def __init__(self, root_motion_removed: bool = False):
        self.original_clips: List[Clip] = []
        self.active_clips: List[Clip] = []
        self.root_motion_removed = root_motion_removed

    def __len__(self) -> int:
        return len(self.active_clips)

    def _derive(self, original: Clip) -> Clip:
        if self.root_motion_removed:
            return apply_root_motion_removal(original)
        return original.clone()

    def _original_for(self, clip: Clip) -> Optional[Clip]:
        for original in self.original_clips:
            if original.uid == clip.uid:
                return original
        return None

    def _check_index(self, index: int):
        if not 0 <= index < len(self.active_clips):
            raise IndexError(f"Clip index {index} out of range (0-{len(self.active_clips) - 1})")

    def add_from_source(self, clips: List[Clip], source_label: Optional[str] = None) -> List[Clip]:
        """
        Append clips contributed by one source asset.

        Args:
            clips: Parsed clips from the source
            source_label: Name given to every incoming clip (usually the source
                file's base name). ``None`` keeps the clips' own names.

        Returns:
            The new active clips, in the order they were appended
        """
        # Build everything first so a bad clip leaves the registry untouched
        originals = []
        for clip in clips:
            original = clip.clone()
            original.uid = uuid.uuid4().hex
            if source_label is not None:
                original.name = source_label
            originals.append(original)
        derived = [self._derive(original) for original in originals]

        self.original_clips.extend(originals)
        self.active_clips.extend(derived)

        if originals:
            logger.info(f"Added {len(originals)} clip(s) from '{source_label or 'model'}'")
        return derived

    def rename(self, index: int, new_name: str) -> str:
        """
        Rename the active clip at ``index`` and its original.

        Blank names fall back to ``Animation_<index>``.

        Returns:
            The name actually applied
        """
        self._check_index(index)
        name = (new_name or "").strip() or f"Animation_{index}"

        clip = self.active_clips[index]
        clip.name = name
        original = self._original_for(clip)
        if original is not None:
            original.name = name

        logger.info(f"Clip {index} renamed to: {name}")
        return name

    def delete(self, index: int) -> Clip:
        """Remove the active clip at ``index`` together with its original"""
        self._check_index(index)
        clip = self.active_clips.pop(index)
        original = self._original_for(clip)
        if original is not None:
            self.original_clips = [c for c in self.original_clips if c is not original]

        logger.info(f"Deleted clip '{clip.name}'")
        return clip

    def reorder(self, from_index: int, to_index: int):
        """Move an active clip; original insertion order is left alone"""
        self._check_index(from_index)
        self._check_index(to_index)
        clip = self.active_clips.pop(from_index)
        self.active_clips.insert(to_index, clip)

    def set_root_motion_mode(self, enabled: bool, player: Optional[ClipPlayer] = None) -> List[Clip]:
        """
        Recompute the active clips with or without root-motion removal.

        Active clips are always rebuilt from the originals. If ``player`` is
        previewing a clip, it restarts from time zero on the rebuilt clip with
        the same name.

        Returns:
            The new active clips
        """
        self.root_motion_removed = enabled

        position: Dict[str, int] = {clip.uid: i for i, clip in enumerate(self.active_clips)}
        ordered = sorted(
            self.original_clips,
            key=lambda c: position.get(c.uid, len(position)),
        )
        self.active_clips = [self._derive(original) for original in ordered]

        if player is not None and player.is_active:
            # Same uid first so duplicate names restart the right clip
            replacement = next(
                (c for c in self.active_clips if c.uid == player.clip.uid),
                self.find(player.clip.name),
            )
            if replacement is not None:
                player.restart(replacement)
            else:
                player.stop()

        logger.info(f"Root motion {'removed from' if enabled else 'restored on'} {len(self.active_clips)} clip(s)")
        return self.active_clips

    def find(self, name: str) -> Optional[Clip]:
        """First active clip called ``name``"""
        for clip in self.active_clips:
            if clip.name == name:
                return clip
        return None

    def names(self) -> List[str]:
        return [clip.name for clip in self.active_clips]

    def clear(self):
        self.original_clips = []
        self.active_clips = []

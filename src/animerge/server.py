# animerge MCP server
from mcp.server.fastmcp import FastMCP, Context
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Any, List

from .blender_socket import connection_settings, is_blender_connected
from .errors import FileAccessError
from .pipeline import LocalFileProvider, Session, SourceResult, SUPPORTED_SOURCE_FORMATS
from .materials import SLOTS

# Configure logging
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("AnimergeMCPServer")


@asynccontextmanager
async def server_lifespan(server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
    """Create the session on startup and release its textures on shutdown"""
    logger.info("animerge MCP server starting up")

    settings = connection_settings()
    if is_blender_connected(settings['host'], settings['port']):
        logger.info(f"Blender reachable at {settings['host']}:{settings['port']}")
    else:
        logger.warning(f"Blender not reachable at {settings['host']}:{settings['port']}")
        logger.warning("FBX files need the Blender addon running; GLB/glTF files work without it")

    session = Session()
    try:
        yield {"session": session}
    finally:
        session.close()
        logger.info("animerge MCP server shut down")


mcp = FastMCP(
    "animerge",
    lifespan=server_lifespan
)


def get_session(ctx: Context) -> Session:
    return ctx.request_context.lifespan_context["session"]


def _read(path: str):
    return LocalFileProvider().read(path)


@mcp.tool()
async def load_model(ctx: Context, path: str) -> str:
    """
    Load the rigged model that animations are merged onto.

    Replaces any previously loaded model and drops its clips. The model's own
    animations are kept under their original names.

    Parameters:
    - path: Path to an .fbx, .glb or .gltf file
    """
    try:
        result = await get_session(ctx).load_model(_read(path))
        return json.dumps(result.to_dict(), indent=2)
    except Exception as e:
        logger.error(f"Error loading model: {str(e)}")
        return f"Error loading model: {str(e)}"


@mcp.tool()
async def add_animations(ctx: Context, paths: List[str]) -> str:
    """
    Add animation files. Each file's clips are named after the file.

    Files are decoded concurrently and appended as they finish, so the clip
    order follows completion order. Load one file per call if order matters.
    If no model is loaded, the first file becomes the model.

    Parameters:
    - paths: Paths to .fbx, .glb or .gltf files
    """
    handles, failed = [], []
    for path in paths:
        try:
            handles.append(_read(path))
        except FileAccessError as e:
            logger.error(str(e))
            failed.append(SourceResult(path, False, error=str(e)))

    try:
        results = await get_session(ctx).add_animations(handles)
        return json.dumps([r.to_dict() for r in failed + results], indent=2)
    except Exception as e:
        logger.error(f"Error adding animations: {str(e)}")
        return f"Error adding animations: {str(e)}"


@mcp.tool()
def list_clips(ctx: Context) -> str:
    """List the clips that will be exported, in export order"""
    session = get_session(ctx)
    return json.dumps({
        "model": session.model.name if session.model else None,
        "in_place": session.registry.root_motion_removed,
        "clips": session.list_clips(),
    }, indent=2)


@mcp.tool()
def rename_clip(ctx: Context, index: int, name: str) -> str:
    """
    Rename a clip. A blank name becomes Animation_<index>.

    Parameters:
    - index: Position in list_clips
    - name: New name
    """
    try:
        applied = get_session(ctx).rename_clip(index, name)
        return f"Clip {index} renamed to: {applied}"
    except Exception as e:
        logger.error(f"Error renaming clip: {str(e)}")
        return f"Error renaming clip: {str(e)}"


@mcp.tool()
def delete_clip(ctx: Context, index: int) -> str:
    """Remove a clip from the export"""
    try:
        clip = get_session(ctx).delete_clip(index)
        return f"Deleted clip: {clip.name}"
    except Exception as e:
        logger.error(f"Error deleting clip: {str(e)}")
        return f"Error deleting clip: {str(e)}"


@mcp.tool()
def move_clip(ctx: Context, from_index: int, to_index: int) -> str:
    """Move a clip to a new position in the export order"""
    try:
        session = get_session(ctx)
        session.move_clip(from_index, to_index)
        return json.dumps(session.list_clips(), indent=2)
    except Exception as e:
        logger.error(f"Error moving clip: {str(e)}")
        return f"Error moving clip: {str(e)}"


@mcp.tool()
def set_in_place(ctx: Context, enabled: bool) -> str:
    """
    Turn in-place mode on or off for every clip.

    In place, the hips/root/pelvis bone keeps its height changes (jumps,
    crouches) but its horizontal travel is pinned to the first frame.
    """
    try:
        session = get_session(ctx)
        clips = session.set_in_place(enabled)
        return f"In-place mode {'on' if enabled else 'off'} for {len(clips)} clip(s)"
    except Exception as e:
        logger.error(f"Error setting in-place mode: {str(e)}")
        return f"Error setting in-place mode: {str(e)}"


@mcp.tool()
def play_clip(ctx: Context, index: int, loop: bool = True, speed: float = 1.0) -> str:
    """
    Start previewing a clip and report how it will play.

    Parameters:
    - index: Position in list_clips
    - loop: Repeat animated clips (static poses always hold one frame)
    - speed: Playback speed, clamped to 0.1-5.0
    """
    try:
        session = get_session(ctx)
        session.player.looping = loop
        session.player.time_scale = speed
        session.play_clip(index)
        return json.dumps(session.preview_status(), indent=2)
    except Exception as e:
        logger.error(f"Error playing clip: {str(e)}")
        return f"Error playing clip: {str(e)}"


@mcp.tool()
def preview_clip(ctx: Context, seconds: float = 0.0, seek_percent: float = None, paused: bool = None) -> str:
    """
    Step the clip started with play_clip and report where playback is.

    Parameters:
    - seconds: Wall time to advance by (scaled by the playback speed)
    - seek_percent: Jump to this position first, 0-100
    - paused: Pause (true) or resume (false) before stepping
    """
    try:
        status = get_session(ctx).step_preview(seconds, seek_percent, paused)
        return json.dumps(status, indent=2)
    except Exception as e:
        logger.error(f"Error stepping preview: {str(e)}")
        return f"Error stepping preview: {str(e)}"


@mcp.tool()
async def load_texture(ctx: Context, slot: str, path: str) -> str:
    """
    Load an image into one PBR slot of every material.

    Parameters:
    - slot: baseColor, normal, metallic, roughness, occlusion or emissive
    - path: Path to the image
    """
    try:
        ref = await get_session(ctx).load_texture(slot, _read(path))
        return f"Loaded {ref.name} ({ref.width}x{ref.height}) into {slot} as {ref.color_space.value}"
    except Exception as e:
        logger.error(f"Error loading texture: {str(e)}")
        return f"Error loading texture: {str(e)}"


@mcp.tool()
async def load_packed_texture(ctx: Context, path: str) -> str:
    """
    Load a packed ORM image (R = occlusion, G = roughness, B = metallic) and
    switch every material to packed mode.
    """
    try:
        ref = await get_session(ctx).load_packed_texture(_read(path))
        return f"Loaded packed texture {ref.name}, shared by: {', '.join(sorted(ref.shared_by))}"
    except Exception as e:
        logger.error(f"Error loading packed texture: {str(e)}")
        return f"Error loading packed texture: {str(e)}"


@mcp.tool()
def set_packed_mode(ctx: Context, enabled: bool) -> str:
    """Switch between the packed ORM image and separate occlusion/roughness/metallic maps"""
    try:
        get_session(ctx).set_packed_mode(enabled)
        return f"Texture mode: {'packed' if enabled else 'separate'}"
    except Exception as e:
        logger.error(f"Error switching texture mode: {str(e)}")
        return f"Error switching texture mode: {str(e)}"


@mcp.tool()
def list_materials(ctx: Context) -> str:
    """List the model's materials after PBR normalization, with bound textures"""
    return json.dumps(get_session(ctx).list_materials(), indent=2)


@mcp.tool()
def export_glb(ctx: Context, filename: str = None) -> str:
    """
    Export the model with every clip and material as one GLB.

    Parameters:
    - filename: Optional name; defaults to the model's file name. The
      extension is always .glb. Files go to ANIMERGE_OUTPUT_DIR or the
      current directory.
    """
    try:
        report = get_session(ctx).export(filename)
        return report.summary()
    except Exception as e:
        logger.error(f"Error exporting: {str(e)}")
        return f"Error exporting: {str(e)}"


@mcp.prompt()
def merge_workflow() -> str:
    """How to build a merged, textured GLB"""
    return f"""To merge animations into one GLB:

    1. load_model() with the rigged character
    2. add_animations() with the animation files (same skeleton); each clip
       is named after its file
    3. list_clips(), then rename_clip() / delete_clip() / move_clip() as needed;
       play_clip() and preview_clip() to check a clip before keeping it
    4. set_in_place(True) if the character should not travel
    5. Optional textures: load_texture() per slot ({', '.join(SLOTS)}), or
       load_packed_texture() for one ORM image
    6. export_glb()

    Supported inputs: {', '.join(SUPPORTED_SOURCE_FORMATS.values())}
    """


# Main execution

def main():
    """Run the MCP server"""
    mcp.run()


if __name__ == "__main__":
    main()

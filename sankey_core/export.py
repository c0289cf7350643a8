"""
Diagram export - SVG and PNG snapshots of the rendered scene.

Two paths from one scene:
- Vector: serialize the scene to SVG markup, making sure it carries the SVG
  namespace and an XML prolog so it opens standalone.
- Raster: clone the scene at an integer upscale, embed it as a data URI,
  decode it off-screen, draw it onto a pixel buffer and encode PNG.

Raster export is the only asynchronous operation in the editor. It runs as
a cancellable asyncio task and reports failures through a callback instead
of raising into the caller.
"""

import asyncio
import base64
import copy
import io
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, Optional, Union
from urllib.parse import quote, unquote_to_bytes

from PIL import Image

from .errors import RasterExportError

logger = logging.getLogger(__name__)

SVG_NAMESPACE = "http://www.w3.org/2000/svg"
XML_PROLOG = '<?xml version="1.0" standalone="no"?>'
SVG_MEDIA_TYPE = "image/svg+xml"
PNG_MEDIA_TYPE = "image/png"
DEFAULT_PNG_SCALE = 2

# Serialize parsed SVG without an "ns0:" prefix
ET.register_namespace("", SVG_NAMESPACE)

# Characters encodeURIComponent leaves as-is, besides alphanumerics and "-_."
SAFE_URI_CHARS = "!~*'()"

_ROOT_TAG = re.compile(r"<svg\b[^>]*>")
_XMLNS_ATTR = re.compile(r"\sxmlns\s*=\s*[\"']")

Scene = Union[ET.Element, str]


@dataclass(frozen=True)
class ExportArtifact:
    """An exported file, ready to be downloaded."""
    filename: str
    media_type: str
    content: bytes


def export_filename(title: str, extension: str) -> str:
    """
    Derive a download filename from the chart title.

    Whitespace runs become a single hyphen, an empty title becomes "chart",
    and the extension is only appended when it is not already there.
    """
    ext = extension if extension.startswith(".") else f".{extension}"
    base = re.sub(r"\s+", "-", (title or "").strip()) or "chart"
    return base if base.endswith(ext) else f"{base}{ext}"


def serialize_scene(scene: Scene) -> str:
    """Serialize a scene element to markup; markup passes through unchanged."""
    if isinstance(scene, str):
        return scene
    return ET.tostring(scene, encoding="unicode")


def normalize_svg_markup(source: str) -> str:
    """
    Make SVG markup standalone: add the SVG namespace and an XML prolog if missing.

    Both insertions are idempotent; markup that already has them is returned
    unchanged.
    """
    match = _ROOT_TAG.search(source)
    if match and not _XMLNS_ATTR.search(match.group(0)):
        start = match.start()
        source = f'{source[:start]}<svg xmlns="{SVG_NAMESPACE}"{source[start + 4:]}'

    if not source.startswith("<?xml"):
        source = f"{XML_PROLOG}\n{source}"

    return source


def export_svg(scene: Scene, title: str) -> ExportArtifact:
    """Vector export. Never fails: it is a pure string transformation."""
    markup = normalize_svg_markup(serialize_scene(scene))
    return ExportArtifact(
        filename=export_filename(title, ".svg"),
        media_type=SVG_MEDIA_TYPE,
        content=markup.encode("utf-8")
    )


# --- Raster helpers ---

def _parse_length(value: Optional[str]) -> float:
    if not value:
        return 0.0
    match = re.match(r"\s*([0-9]*\.?[0-9]+)", value)
    return float(match.group(1)) if match else 0.0


def scene_dimensions(scene: ET.Element) -> tuple[float, float]:
    """Declared scene size: the viewBox size if set, else width/height."""
    view_box = scene.get("viewBox")
    if view_box:
        parts = view_box.replace(",", " ").split()
        if len(parts) == 4:
            try:
                vb_width, vb_height = float(parts[2]), float(parts[3])
            except ValueError:
                vb_width = vb_height = 0.0
            if vb_width and vb_height:
                return vb_width, vb_height
    return _parse_length(scene.get("width")), _parse_length(scene.get("height"))


def scale_scene(scene: Scene, scale: int) -> tuple[ET.Element, int, int]:
    """
    Clone the scene with its declared width/height multiplied by scale.

    Returns:
        (clone, scaled_width, scaled_height)
    """
    if isinstance(scene, str):
        clone = ET.fromstring(scene)
    else:
        clone = copy.deepcopy(scene)

    width, height = scene_dimensions(clone)
    scaled_width = int(round(width * scale))
    scaled_height = int(round(height * scale))
    clone.set("width", str(scaled_width))
    clone.set("height", str(scaled_height))
    return clone, scaled_width, scaled_height


def encode_data_uri(markup: str) -> str:
    """Embed SVG markup as a percent-encoded data URI."""
    return f"data:{SVG_MEDIA_TYPE};charset=utf-8,{quote(markup, safe=SAFE_URI_CHARS)}"


def decode_data_uri(uri: str) -> bytes:
    """Decode a data URI back to its payload bytes."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:"):
        raise RasterExportError("Not a data URI")
    if header.endswith(";base64"):
        return base64.b64decode(payload)
    return unquote_to_bytes(payload)


def _render_svg(svg_bytes: bytes, width: int, height: int) -> bytes:
    """Decode SVG off-screen into PNG bytes of the requested size."""
    # Imported lazily: cairosvg loads the native cairo library on import
    import cairosvg
    return cairosvg.svg2png(bytestring=svg_bytes, output_width=width, output_height=height)


def draw_to_buffer(png_bytes: bytes, width: int, height: int) -> Image.Image:
    """Draw a decoded image onto a transparent RGBA buffer of exactly width x height."""
    if width <= 0 or height <= 0:
        raise RasterExportError(f"Cannot allocate a {width}x{height} pixel buffer")
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    with Image.open(io.BytesIO(png_bytes)) as decoded:
        image = decoded.convert("RGBA")
    if image.size != (width, height):
        image = image.resize((width, height))
    canvas.alpha_composite(image)
    return canvas


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def rasterize(markup: str, width: int, height: int) -> bytes:
    """Blocking raster pipeline: data URI -> off-screen decode -> pixel buffer -> PNG."""
    if width <= 0 or height <= 0:
        raise RasterExportError(f"Cannot allocate a {width}x{height} pixel buffer")
    svg_bytes = decode_data_uri(encode_data_uri(markup))
    decoded = _render_svg(svg_bytes, width, height)
    return encode_png(draw_to_buffer(decoded, width, height))


async def export_png(scene: Scene, title: str, scale: int = DEFAULT_PNG_SCALE) -> ExportArtifact:
    """
    Raster export at an integer upscale.

    Raises:
        RasterExportError: for any failure in the pipeline
    """
    try:
        if isinstance(scale, bool) or not isinstance(scale, int) or scale < 1:
            raise RasterExportError(f"PNG scale must be a positive integer, got {scale!r}")
        clone, width, height = scale_scene(scene, scale)
        markup = normalize_svg_markup(serialize_scene(clone))
        # Decode and draw off the interaction thread
        content = await asyncio.to_thread(rasterize, markup, width, height)
    except RasterExportError:
        raise
    except Exception as e:
        raise RasterExportError(f"PNG export failed: {e}") from e

    return ExportArtifact(
        filename=export_filename(title, ".png"),
        media_type=PNG_MEDIA_TYPE,
        content=content
    )


def start_png_export(
    scene: Scene,
    title: str,
    scale: int = DEFAULT_PNG_SCALE,
    on_done: Optional[Callable[[ExportArtifact], None]] = None,
    on_error: Optional[Callable[[RasterExportError], None]] = None
) -> "asyncio.Task[Optional[ExportArtifact]]":
    """
    Run a PNG export as a cancellable task on the running event loop.

    The scene is cloned before this returns, so later edits do not leak into
    the export. Failures are logged and passed to on_error; the task then
    resolves to None instead of raising.
    """
    if isinstance(scene, ET.Element):
        scene = copy.deepcopy(scene)

    async def _run() -> Optional[ExportArtifact]:
        try:
            artifact = await export_png(scene, title, scale)
        except RasterExportError as e:
            logger.error("Failed to export PNG: %s", e, exc_info=e)
            if on_error is not None:
                on_error(e)
            return None

        if on_done is not None:
            on_done(artifact)
        return artifact

    return asyncio.get_running_loop().create_task(_run())

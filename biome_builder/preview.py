"""
Type map preview rendering.

Colours every painted cell with its ecotope's colour and optionally marks
generated objects on top:

    type map -> colour lookup table -> upscale -> object markers -> image

All drawing is done with Pillow.
"""

import logging

log = logging.getLogger(__name__)

try:
    from PIL import Image, ImageDraw
except ImportError:
    raise ImportError(
        "Pillow is required for type map previews.  Install with: pip install Pillow"
    )

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "NumPy is required for type map previews.  Install with: pip install numpy"
    )

from .colors import color_to_rgb8
from .type_map import MAX_BIOMES


UNASSIGNED_COLOR = (0, 0, 0, 0)
INVALID_SLOT_COLOR = (255, 0, 255, 255)
MARKER_COLOR = (20, 20, 20, 255)


def build_color_table(slots):
    """
    (256, 4) uint8 lookup from slot value to RGBA.

    Values with a slot but no ecotope render magenta so cleared slots stand
    out.
    """
    table = np.zeros((MAX_BIOMES, 4), dtype=np.uint8)
    table[0] = UNASSIGNED_COLOR
    for slot in slots:
        if not 0 < slot.value < MAX_BIOMES:
            continue
        if slot.ecotope is None:
            table[slot.value] = INVALID_SLOT_COLOR
        else:
            table[slot.value] = color_to_rgb8(slot.ecotope.color) + (255,)
    return table


def render_type_map(type_map, slots, scale=1):
    """
    Render *type_map* as an RGBA image, *scale* pixels per cell.

    Row 0 of the grid is the top row of the image.
    """
    table = build_color_table(slots)
    rgba = table[type_map.grid]
    img = Image.fromarray(rgba)
    if scale != 1:
        size = (type_map.resolution * scale, type_map.resolution * scale)
        img = img.resize(size, Image.NEAREST)
    return img


def draw_objects(img, positions, terrain_size, origin=(0.0, 0.0), radius=1,
                 color=MARKER_COLOR):
    """Mark world (x, y[, z]) *positions* on a preview image in place."""
    draw = ImageDraw.Draw(img)
    width, height = img.size
    ox, oy = origin[0], origin[1]
    for position in positions:
        px = (position[0] - ox) / terrain_size * width
        py = (position[1] - oy) / terrain_size * height
        draw.ellipse([px - radius, py - radius, px + radius, py + radius], fill=color)
    return img


def save_type_map_preview(filepath, type_map, slots, scale=1, objects=None,
                          terrain_size=None, origin=(0.0, 0.0)):
    """
    Render and save a preview PNG.

    Args:
        filepath:     Output path.
        type_map:     BiomeTypeMap to render.
        slots:        EcotopeSlots providing colours.
        scale:        Pixels per cell.
        objects:      Optional iterable of scene objects (anything with a
                      ``position``) to mark.
        terrain_size: World size, required when *objects* is given.
        origin:       Terrain origin for the object markers.

    Returns:
        str: *filepath*.
    """
    img = render_type_map(type_map, slots, scale)
    if objects is not None:
        if terrain_size is None:
            raise ValueError("terrain_size is required to draw objects")
        draw_objects(img, [obj.position for obj in objects], terrain_size, origin,
                     radius=max(1, scale // 2))
    img.save(filepath)
    log.info("Wrote type map preview %s (%dx%d)", filepath, img.size[0], img.size[1])
    return filepath

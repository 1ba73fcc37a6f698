"""
TerrainBiomes: the hosting component tying everything together.

Owns the terrain reference, the type map, the ecotope slots, the
generated object store and the current :class:`GenerationContext`.

Settings file (``biomes.json``)::

    {
        "format_version": "1.0.0",
        "seed": 1234,
        "tiles": [20, 20],
        "max_workers": 8,
        "asset_library": "assets.json",
        "ecotopes": [
            {"value": 1, "file": "forest.ecotope.json"},
            {"value": 2, "ecotope": { ...inline ecotope... }}
        ],
        "type_map": "<base64(deflate(bytes))>"
    }

Relative file references are resolved against the settings file's
directory.
"""

import collections
import logging
import math
import os
import random

from .context import DEFAULT_MAX_WORKERS, GenerationContext
from .generator import EcotopeGeneratorTile
from .resources import (FORMAT_VERSION, ecotope_from_dict, ecotope_to_dict,
                        load_asset_library, load_ecotope, load_json, save_json)
from .scene import GeneratedObjectStore, InMemoryScene
from .terrain import SetupError
from .type_map import MAX_BIOMES, BiomeTypeMap, EcotopeSlots

log = logging.getLogger(__name__)


DEFAULT_TILES = (20, 20)

PaintEdit = collections.namedtuple('PaintEdit', ['rect', 'before', 'after', 'tiles'])


# ---------------------------------------------------------------------------
# Settings validation
# ---------------------------------------------------------------------------

def validate_biome_settings(data):
    """
    Validate a biome settings dict.

    Returns a list of error strings; empty means valid.
    """
    errors = []

    if "format_version" not in data:
        errors.append("Missing required field: format_version")
    elif str(data["format_version"]).split('.')[0] != FORMAT_VERSION.split('.')[0]:
        errors.append("Unsupported format_version '{}'".format(data["format_version"]))

    tiles = data.get("tiles", DEFAULT_TILES)
    if (not isinstance(tiles, (list, tuple)) or len(tiles) != 2
            or any(not isinstance(t, int) or t <= 0 for t in tiles)):
        errors.append("tiles must be two positive integers, got {!r}".format(tiles))

    if not isinstance(data.get("seed", 0), int):
        errors.append("seed must be an integer")

    workers = data.get("max_workers", DEFAULT_MAX_WORKERS)
    if not isinstance(workers, int) or workers <= 0:
        errors.append("max_workers must be a positive integer")

    seen = set()
    for i, entry in enumerate(data.get("ecotopes", [])):
        value = entry.get("value") if isinstance(entry, dict) else None
        if not isinstance(value, int) or not 0 < value < MAX_BIOMES:
            errors.append("ecotopes[{}] has invalid value {!r}".format(i, value))
            continue
        if value in seen:
            errors.append("ecotopes[{}] reuses value {}".format(i, value))
        seen.add(value)
        if "file" not in entry and "ecotope" not in entry:
            errors.append("ecotopes[{}] needs 'file' or 'ecotope'".format(i))

    type_map = data.get("type_map")
    if type_map is not None and not isinstance(type_map, str):
        errors.append("type_map must be a base64 string")

    return errors


# ---------------------------------------------------------------------------
# Component
# ---------------------------------------------------------------------------

class TerrainBiomes:
    """
    Biome painting and generation for one terrain.

    Args:
        terrain: :class:`~biome_builder.terrain.Terrain` (may be None until
                 :meth:`setup`; generation refuses to start without one).
        scene:   :class:`~biome_builder.scene.Scene`; defaults to a new
                 :class:`~biome_builder.scene.InMemoryScene`.
    """

    def __init__(self, terrain=None, scene=None, seed=0, tiles=DEFAULT_TILES,
                 max_workers=DEFAULT_MAX_WORKERS):
        self.terrain = terrain
        self.scene = scene if scene is not None else InMemoryScene()
        self.store = GeneratedObjectStore(self.scene)
        self.slots = EcotopeSlots()
        self.seed = seed
        self.tiles = tuple(tiles)
        self.max_workers = max_workers
        self.type_map = None
        self.progress_observer = None
        self.auto_regenerate = False
        self.config_path = None
        self.asset_library = {}
        self.asset_library_path = None

        self._persisted_type_map = None
        self._context = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, config):
        """
        Load settings from a dict or a ``biomes.json`` path and set up.

        Raises:
            ValueError: if the settings fail validation.
            CorruptTypeMapError: if the persisted type map is corrupt.
        """
        base_dir = None
        if isinstance(config, str):
            self.config_path = os.path.abspath(config)
            base_dir = os.path.dirname(self.config_path)
            config = load_json(config)

        errors = validate_biome_settings(config)
        if errors:
            raise ValueError("Invalid biome settings:\n  " + "\n  ".join(errors))

        self.seed = config.get("seed", 0)
        self.tiles = tuple(config.get("tiles", DEFAULT_TILES))
        self.max_workers = config.get("max_workers", DEFAULT_MAX_WORKERS)

        library = config.get("asset_library")
        if isinstance(library, str):
            self.asset_library_path = os.path.abspath(self._resolve(library, base_dir))
            self.asset_library = load_asset_library(self.asset_library_path)

        self.slots = EcotopeSlots()
        for entry in config.get("ecotopes", []):
            if "file" in entry:
                ecotope = load_ecotope(self._resolve(entry["file"], base_dir), self.asset_library)
            else:
                ecotope = ecotope_from_dict(entry["ecotope"], self.asset_library)
            self.slots.assign(entry["value"], ecotope)

        self._persisted_type_map = config.get("type_map") or None
        self.type_map = None
        return self.setup()

    @staticmethod
    def _resolve(path, base_dir):
        if base_dir and not os.path.isabs(path):
            return os.path.join(base_dir, path)
        return path

    def validate(self):
        """Raise :class:`SetupError` if generation cannot run."""
        if self.terrain is None:
            raise SetupError("Can't create terrain biomes with a null terrain reference!")
        self.terrain.validate()
        for slot in self.slots:
            if slot.ecotope is None:
                continue
            for _, reference in slot.ecotope.iter_assets():
                if reference.asset is None:
                    raise SetupError("Ecotope '{}' has a missing asset reference".format(
                        slot.ecotope.name))

    def setup(self):
        """
        Prepare the type map for the terrain's resolution.

        Returns False (after logging) on a setup error.  A corrupt persisted
        type map raises :class:`~biome_builder.type_map.CorruptTypeMapError`.
        """
        try:
            self.validate()
        except SetupError as e:
            log.error("%s", e)
            return False

        resolution = self.terrain.resolution
        if not self.seed:
            self.seed = random.randrange(1, 2 ** 31)

        if self._persisted_type_map:
            self.type_map = BiomeTypeMap.deserialize(self._persisted_type_map, resolution)
            self._persisted_type_map = None
        elif self.type_map is None or self.type_map.resolution != resolution:
            self.type_map = BiomeTypeMap(resolution)
        return True

    def teardown(self):
        """Cancel generation and stash the type map for a later :meth:`setup`."""
        self.cancel_generation(clear_remaining_list=True)
        if self.type_map is not None:
            self._persisted_type_map = self.type_map.serialize()
        self.type_map = None

    def reset(self):
        """Erase the type map and every generated object; pick a new seed."""
        self.cancel_generation(clear_remaining_list=True)
        if self.tiles[0] <= 0 or self.tiles[1] <= 0:
            self.tiles = DEFAULT_TILES
        self.seed = random.randrange(1, 2 ** 31)
        self._persisted_type_map = None
        self.type_map = None
        self.store.delete_all()
        return self.setup()

    @property
    def is_ready(self):
        return self.type_map is not None

    # ------------------------------------------------------------------
    # Ecotope slots
    # ------------------------------------------------------------------

    def add_ecotope(self, ecotope):
        return self.slots.add(ecotope)

    def remove_ecotope(self, value=None, ecotope=None):
        return self.slots.remove(value=value, ecotope=ecotope)

    def clear_ecotope(self, ecotope):
        self.slots.clear(ecotope)

    def replace_ecotope(self, value, ecotope):
        return self.slots.replace(value, ecotope)

    # ------------------------------------------------------------------
    # Tiles
    # ------------------------------------------------------------------

    @property
    def extents(self):
        size = self.terrain.terrain_size
        return size, size

    @property
    def tile_extents(self):
        ext_x, ext_y = self.extents
        return ext_x / self.tiles[0], ext_y / self.tiles[1]

    def world_position_to_tile(self, position):
        ext_x, ext_y = self.tile_extents
        ox, oy = self.terrain.origin[0], self.terrain.origin[1]
        return (int(math.floor((position[0] - ox) / ext_x)),
                int(math.floor((position[1] - oy) / ext_y)))

    def is_tile_valid(self, tile):
        return 0 <= tile[0] < self.tiles[0] and 0 <= tile[1] < self.tiles[1]

    def all_tiles(self):
        return [(x, y) for x in range(self.tiles[0]) for y in range(self.tiles[1])]

    def create_tile_generator(self, tx, ty):
        return EcotopeGeneratorTile(self.seed, tx, ty, self.tile_extents,
                                    self.terrain, self.type_map, self.slots)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @property
    def generation_context(self):
        return self._context

    def _new_context(self):
        context = GenerationContext(self, self.max_workers)
        if self.progress_observer is not None:
            context.set_progress_observer(self.progress_observer)
        return context

    def _ensure_setup(self):
        if self.is_ready:
            try:
                self.validate()
            except SetupError as e:
                log.error("%s", e)
                return False
            return True
        return self.setup()

    def cancel_generation(self, clear_remaining_list=False, wait=False):
        if self._context is not None:
            self._context.cancel(clear_remaining_list, wait=wait)

    def generate_all(self):
        """Generate every tile.  Returns the new context, or None on setup error."""
        if not self._ensure_setup():
            return None

        self.cancel_generation(wait=True)
        context = self._new_context()
        for tile in self.all_tiles():
            context.add_tile(tile)

        self._context = context
        return context.generate()

    def regenerate_tiles(self, tiles):
        """
        Regenerate *tiles*, folding in anything the previous context did
        not finish.  Invalid coordinates are ignored.
        """
        if not self._ensure_setup():
            return None

        context = self._new_context()
        if self._context is not None:
            self._context.cancel(wait=True)
            for tile in self._context.tiles_still_to_generate:
                context.add_tile(tile)

        for tile in tiles:
            if self.is_tile_valid(tile):
                context.add_tile(tile)

        self._context = context
        return context.generate()

    def delete_tile(self, tile):
        return self.store.delete_tile(tile)

    def iter_delete_tile(self, tile, cancel_event=None):
        return self.store.iter_delete_tile(tile, cancel_event)

    def delete_all(self):
        return self.store.delete_all()

    def iter_delete_all(self, cancel_event=None):
        return self.store.iter_delete_all(cancel_event)

    # ------------------------------------------------------------------
    # Painting
    # ------------------------------------------------------------------

    def tiles_for_region(self, rect):
        """Tile coordinates touched by a cell rectangle, one cell conservative."""
        res = self.type_map.resolution
        cell = self.terrain.terrain_size / res
        ext_x, ext_y = self.tile_extents
        left, top, right, bottom = rect

        tx0 = int(math.floor(max(left - 1, 0) * cell / ext_x))
        tx1 = int(math.floor(min(right + 1, res - 1) * cell / ext_x))
        ty0 = int(math.floor(max(top - 1, 0) * cell / ext_y))
        ty1 = int(math.floor(min(bottom + 1, res - 1) * cell / ext_y))

        tiles = []
        for tx in range(tx0, tx1 + 1):
            for ty in range(ty0, ty1 + 1):
                if self.is_tile_valid((tx, ty)):
                    tiles.append((tx, ty))
        return tiles

    def paint(self, rect, value, auto_regenerate=None):
        """
        Write *value* (a slot value or a 2D array) into the cell rectangle.

        Any in-flight generation is cancelled first and its workers are
        joined before the type map is written; its unfinished tiles are
        picked up by the next :meth:`regenerate_tiles`.  An array brush is
        anchored at the unclamped corner of *rect*.

        Returns:
            PaintEdit: clamped rect, region before/after and dirty tiles,
            or None if the component is not set up.
        """
        if not self.is_ready and not self.setup():
            return None

        self.cancel_generation(wait=True)

        clamped = self.type_map._clamp_rect(rect)
        before = self.type_map.read_region(clamped)
        self.type_map.write_region(rect, value)
        after = self.type_map.read_region(clamped)
        edit = PaintEdit(clamped, before, after, self.tiles_for_region(clamped))

        if auto_regenerate is None:
            auto_regenerate = self.auto_regenerate
        if auto_regenerate:
            self.regenerate_tiles(edit.tiles)
        return edit

    def undo_paint(self, edit, auto_regenerate=None):
        """Restore the region captured by a :class:`PaintEdit`."""
        return self.paint(edit.rect, edit.before, auto_regenerate)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_config(self, base_dir=None):
        """
        Settings dict for this component.

        Ecotopes that came from a file are written as relative references
        when *base_dir* is given, everything else is inlined.
        """
        ecotopes = []
        for slot in sorted(self.slots, key=lambda s: s.value):
            if slot.ecotope is None:
                continue
            source = slot.ecotope.source_path
            if source:
                if base_dir:
                    source = os.path.relpath(source, base_dir)
                ecotopes.append({"value": slot.value, "file": source})
            else:
                ecotopes.append({"value": slot.value, "ecotope": ecotope_to_dict(slot.ecotope)})

        if self.type_map is not None:
            type_map = self.type_map.serialize()
        else:
            type_map = self._persisted_type_map

        config = {
            "format_version": FORMAT_VERSION,
            "seed": self.seed,
            "tiles": list(self.tiles),
            "max_workers": self.max_workers,
            "ecotopes": ecotopes,
            "type_map": type_map,
        }
        if self.asset_library_path:
            library = self.asset_library_path
            if base_dir:
                library = os.path.relpath(library, base_dir)
            config["asset_library"] = library
        return config

    def save_config(self, filepath):
        base_dir = os.path.dirname(os.path.abspath(filepath))
        save_json(filepath, self.to_config(base_dir))
        self.config_path = os.path.abspath(filepath)
        log.info("Wrote biome settings to %s", filepath)
        return filepath

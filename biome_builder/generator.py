"""
Tile generation pipeline.

One :class:`EcotopeGeneratorTile` covers a tile of the terrain.  Its
compute phase discovers the ecotopes painted under the tile and runs one
:class:`EcotopeGeneratorTileLayer` per ecotope:

    layer rules per asset  ->  merge into one PointCloud  ->  global rules

and returns an immutable tuple of :class:`PlacementDescriptor`.  The apply
phase turns descriptors into scene objects, one per step.  Compute never
touches the scene; apply never touches the rules.

Cancellation is cooperative: *cancel_event* (a ``threading.Event``) is
checked at every state transition, between rules, and between
instantiated objects.
"""

import collections
import enum
import logging
import random

from .point_cloud import AssetPoint, PointCloud

log = logging.getLogger(__name__)


class TileState(enum.Enum):
    IDLE = "idle"
    SCANNING_ECOTOPES = "scanning_ecotopes"
    GENERATING_LAYERS = "generating_layers"
    MERGING_POINT_CLOUD = "merging_point_cloud"
    APPLYING_GLOBAL_RULES = "applying_global_rules"
    INSTANTIATING_OBJECTS = "instantiating_objects"
    DONE = "done"
    CANCELLED = "cancelled"


PlacementDescriptor = collections.namedtuple(
    'PlacementDescriptor',
    ['tile', 'asset_name', 'model', 'position', 'rotation', 'scale', 'tint', 'tags'],
)


def _cancelled(cancel_event):
    return cancel_event is not None and cancel_event.is_set()


def tile_seed(seed, tx, ty):
    """Seed of the random stream for tile (*tx*, *ty*)."""
    return seed * (tx + 1) + ty


# ---------------------------------------------------------------------------
# Generator state
# ---------------------------------------------------------------------------

class GeneratorState:
    """
    Working state for one asset of one layer of one ecotope in one tile.

    Layer rules read and mutate :attr:`points`.  All states of a tile layer
    share the tile layer's random stream.
    """

    def __init__(self, asset_reference, slot_value, layer, density,
                 world_origin, local_origin, extents, seed, rng, terrain, type_map):
        self.asset_reference = asset_reference
        self.slot_value = slot_value
        self.layer = layer
        self.density = density
        self.world_origin = tuple(world_origin)
        self.local_origin = tuple(local_origin)
        self.extents = tuple(extents)
        self.seed = seed
        self.rng = rng
        self.terrain = terrain
        self.type_map = type_map
        self.points = PointCloud(rng)

    def _on_slot(self, x, y):
        value = self.type_map.sample_world(x, y, self.terrain.terrain_size)
        return value is not None and value == self.slot_value

    def add_from_local_points(self, points):
        """
        Add tile-local 2D points that land on this state's painted cells.

        Returns the number of points added.
        """
        lx, ly = self.local_origin[0], self.local_origin[1]
        wx, wy, wz = self.world_origin
        added = 0
        for px, py in points:
            if self._on_slot(lx + px, ly + py):
                self.points.add(self.create_point((wx + px, wy + py, wz)))
                added += 1
        return added

    def add_from_world_points(self, points):
        """Add world-space 3D points that land on this state's painted cells."""
        ox, oy = self.terrain.origin[0], self.terrain.origin[1]
        added = 0
        for p in points:
            if self._on_slot(p[0] - ox, p[1] - oy):
                self.points.add(self.create_point(p))
                added += 1
        return added

    def create_point(self, position):
        asset = self.asset_reference.asset
        model_index = 0
        if len(asset.models) > 1:
            model_index = self.rng.randint(0, len(asset.models) - 1)
        return AssetPoint(
            position=position,
            layer=self.layer,
            viability=asset.viability,
            footprint_radius=asset.footprint_radius,
            collision_radius=asset.collision_radius,
            model_index=model_index,
        )


# ---------------------------------------------------------------------------
# Tile layer (one ecotope in one tile)
# ---------------------------------------------------------------------------

class EcotopeGeneratorTileLayer:
    """Generates the point cloud of a single ecotope within a tile."""

    def __init__(self, seed, tile, ecotope, slot_value, extents,
                 local_origin, world_origin, terrain, type_map):
        self.seed = seed
        self.tile = tuple(tile)
        self.ecotope = ecotope
        self.slot_value = slot_value
        self.extents = tuple(extents)
        self.local_origin = tuple(local_origin)
        self.world_origin = tuple(world_origin)
        self.terrain = terrain
        self.type_map = type_map

        self.rng = random.Random(tile_seed(seed, self.tile[0], self.tile[1]))
        self.cloud = PointCloud(self.rng)
        self.states = []
        self.assets = []

    def generate_states(self, cancel_event=None):
        """Run every layer's rules over every asset, in configured order."""
        self.states = []
        self.assets = []
        for layer_index, reference in self.ecotope.iter_assets():
            layer = self.ecotope.layers[layer_index]
            state = GeneratorState(
                reference, self.slot_value, layer_index, self.ecotope.density,
                self.world_origin, self.local_origin, self.extents,
                self.seed, self.rng, self.terrain, self.type_map,
            )
            for rule in layer.rules:
                rule.execute(state)
                if _cancelled(cancel_event):
                    return False

            self.states.append(state)
            self.assets.append(reference.asset)
        return True

    def merge(self):
        """Concatenate all states into :attr:`cloud` with sequential ids."""
        self.cloud.clear()
        next_id = 0
        for asset_index, state in enumerate(self.states):
            for point in state.points:
                point.id = next_id
                point.asset_index = asset_index
                self.cloud.add(point)
                next_id += 1
        return self.cloud

    def apply_global_rules(self, cancel_event=None):
        for rule in self.ecotope.global_rules:
            rule.execute(self.cloud)
            if _cancelled(cancel_event):
                return False
        return True

    def descriptors(self):
        result = []
        for point in self.cloud:
            asset = self.assets[point.asset_index]
            model = asset.models[point.model_index] if asset.models else None
            result.append(PlacementDescriptor(
                self.tile, asset.name, model, point.position, point.rotation,
                point.scale, point.tint, point.tags,
            ))
        return tuple(result)

    def compute(self, cancel_event=None):
        """Full pipeline for this ecotope; None if cancelled part way."""
        if not self.generate_states(cancel_event):
            return None
        self.merge()
        if _cancelled(cancel_event):
            return None
        if not self.apply_global_rules(cancel_event):
            return None
        return self.descriptors()


# ---------------------------------------------------------------------------
# Tile
# ---------------------------------------------------------------------------

class EcotopeGeneratorTile:
    """
    Compute and apply phases for one tile.

    Args:
        seed:         Global seed of the biome settings.
        tx, ty:       Tile coordinate.
        tile_extents: (width, height) of a tile in world units.
        terrain:      :class:`~biome_builder.terrain.Terrain`.
        type_map:     :class:`~biome_builder.type_map.BiomeTypeMap`.
        slots:        :class:`~biome_builder.type_map.EcotopeSlots`.
    """

    def __init__(self, seed, tx, ty, tile_extents, terrain, type_map, slots):
        self.seed = seed
        self.tile = (tx, ty)
        self.tile_extents = tuple(tile_extents)
        self.terrain = terrain
        self.type_map = type_map
        self.slots = slots
        self.layers = []
        self.state = TileState.IDLE

    def __repr__(self):
        return "EcotopeGeneratorTile({}, {})".format(self.tile, self.state.name)

    def _transition(self, new_state, cancel_event):
        if _cancelled(cancel_event):
            self.state = TileState.CANCELLED
            return False
        log.debug("Tile %s: %s -> %s", self.tile, self.state.name, new_state.name)
        self.state = new_state
        return True

    def scan_ecotopes(self):
        tx, ty = self.tile
        ext_x, ext_y = self.tile_extents
        terrain_size = self.terrain.terrain_size

        self.layers = []
        if not self.type_map.any_present(self.tile_extents, terrain_size, tx, ty):
            return self.layers

        local_origin = (ext_x * tx, ext_y * ty, 0.0)
        ox, oy, oz = self.terrain.origin
        world_origin = (ox + local_origin[0], oy + local_origin[1], oz)
        for value, ecotope in self.type_map.query(self.tile_extents, terrain_size,
                                                  tx, ty, self.slots):
            self.layers.append(EcotopeGeneratorTileLayer(
                self.seed, self.tile, ecotope, value, self.tile_extents,
                local_origin, world_origin, self.terrain, self.type_map,
            ))
        return self.layers

    def compute(self, cancel_event=None):
        """
        Run scanning, layer generation, merging and global rules.

        Returns a tuple of :class:`PlacementDescriptor` (empty when no
        ecotope is painted under the tile), or None if cancelled.
        Exceptions raised by rules propagate.
        """
        if not self._transition(TileState.SCANNING_ECOTOPES, cancel_event):
            return None
        self.scan_ecotopes()

        descriptors = []
        for layer in self.layers:
            if not self._transition(TileState.GENERATING_LAYERS, cancel_event):
                return None
            if not layer.generate_states(cancel_event):
                self.state = TileState.CANCELLED
                return None

            if not self._transition(TileState.MERGING_POINT_CLOUD, cancel_event):
                return None
            layer.merge()

            if not self._transition(TileState.APPLYING_GLOBAL_RULES, cancel_event):
                return None
            if not layer.apply_global_rules(cancel_event):
                self.state = TileState.CANCELLED
                return None

            descriptors.extend(layer.descriptors())

        if _cancelled(cancel_event):
            self.state = TileState.CANCELLED
            return None

        log.debug("Tile %s computed %d placements from %d ecotopes",
                  self.tile, len(descriptors), len(self.layers))
        return tuple(descriptors)

    def iter_apply(self, descriptors, store, cancel_event=None):
        """
        Instantiate *descriptors* through *store*, one object per step.

        A generator yielding each created object.  Must run on the thread
        that owns the scene.
        """
        if not self._transition(TileState.INSTANTIATING_OBJECTS, cancel_event):
            return
        parent = store.get_tile_parent(self.tile)
        for descriptor in descriptors:
            yield store.instantiate(descriptor, parent)
            if _cancelled(cancel_event):
                self.state = TileState.CANCELLED
                return
        self.state = TileState.DONE

    def apply(self, descriptors, store, cancel_event=None):
        """Instantiate everything in one go; returns the object count."""
        return sum(1 for _ in self.iter_apply(descriptors, store, cancel_event))

    def generate(self, store, cancel_event=None):
        """Compute and apply on the calling thread."""
        descriptors = self.compute(cancel_event)
        if descriptors is None:
            return 0
        store.delete_tile(self.tile)
        return self.apply(descriptors, store, cancel_event)

"""
Biome Builder - Procedural ecotope scattering for painted terrains

Populates a terrain with generated objects (vegetation, rocks, props)
according to a painted biome type map and declarative ecotope rules.
The terrain is split into tiles that are computed in parallel; placed
objects are created on the thread that owns the scene.

Ecotopes and biome settings are plain versioned JSON files; see
:mod:`biome_builder.resources` and :mod:`biome_builder.biomes`.
"""

from .type_map import (BiomeTypeMap, EcotopeSlot, EcotopeSlots, CorruptTypeMapError,
                       MAX_BIOMES, compress_bytes, decompress_bytes)
from .point_cloud import AssetPoint, PointCloud
from .sampling import (poisson_disk_sampling, sample_rectangle, sample_circle,
                       grid_sampling, apply_jitter, remove_close_points,
                       BayerDithering4x4, BayerDithering8x8, SimplexNoise, NoiseField)
from .colors import Gradient, parse_color, color_to_hex
from .resources import (EcotopeAsset, AssetReference, EcotopeLayer, EcotopeDefinition,
                        load_ecotope, save_ecotope, ecotope_from_dict, ecotope_to_dict,
                        validate_ecotope, load_asset_library, FORMAT_VERSION)
from .rules import (LAYER_RULES, GLOBAL_RULES, UnknownRuleError, LayerRule, GlobalRule,
                    register_layer_rule, register_global_rule, create_layer_rule,
                    create_global_rule, create_rule)
from .terrain import Terrain, HeightfieldTerrain, SphereCollider, TraceHit, SetupError
from .scene import Scene, InMemoryScene, SceneObject, GeneratedObjectStore
from .generator import (TileState, PlacementDescriptor, GeneratorState,
                        EcotopeGeneratorTile, EcotopeGeneratorTileLayer)
from .context import GenerationContext
from .biomes import TerrainBiomes, PaintEdit, validate_biome_settings
from .preview import render_type_map, save_type_map_preview


def populate_terrain(heightmap, terrain_size, terrain_height, type_map, ecotopes,
                     seed=1, tiles=(4, 4), max_workers=8, scene=None, colliders=None,
                     timeout=None):
    """
    High-level API to populate a heightfield terrain in one call.

    Builds a :class:`HeightfieldTerrain`, assigns *ecotopes* to slot values
    1, 2, ... in order, generates every tile and pumps the results into
    *scene* on the calling thread.

    Args:
        heightmap:      2D array of normalised heights in [0, 1].
        terrain_size:   World size of the square terrain.
        terrain_height: World height range.
        type_map:       BiomeTypeMap, or a 2D array of slot values, sized to
                        the heightmap's resolution.
        ecotopes:       List of EcotopeDefinition; the first is painted as 1.
        seed:           Global seed (non-zero).
        tiles:          (x, y) tile counts.
        max_workers:    Concurrent tile computations.
        scene:          Target scene; a new InMemoryScene if None.
        colliders:      Optional list of SphereCollider.
        timeout:        Seconds to wait for completion (None = no limit).

    Returns:
        dict: {
            'biomes': TerrainBiomes,
            'context': GenerationContext or None,
            'objects': int,
            'failed_tiles': dict,
            'complete': bool,
        }
    """
    terrain = HeightfieldTerrain(heightmap, terrain_size, terrain_height,
                                 colliders=colliders)
    biomes = TerrainBiomes(terrain, scene, seed=seed, tiles=tiles,
                           max_workers=max_workers)
    for ecotope in ecotopes:
        biomes.add_ecotope(ecotope)

    result = {
        'biomes': biomes,
        'context': None,
        'objects': 0,
        'failed_tiles': {},
        'complete': False,
    }

    if not biomes.setup():
        return result

    if not isinstance(type_map, BiomeTypeMap):
        type_map = BiomeTypeMap(terrain.resolution, type_map)
    if type_map.resolution != terrain.resolution:
        raise ValueError("Type map resolution {} does not match terrain resolution {}".format(
            type_map.resolution, terrain.resolution))
    biomes.type_map = type_map

    context = biomes.generate_all()
    result['context'] = context
    if context is None:
        return result

    result['complete'] = context.wait(timeout)
    result['failed_tiles'] = dict(context.failed_tiles)
    result['objects'] = sum(len(biomes.store.tile_objects(t)) for t in biomes.all_tiles())
    return result

"""
Tests for biome_builder.generator and biome_builder.scene.

Tests:
  Tile compute: containment on the painted slot, determinism, merge ids
  State machine: transitions, cooperative cancellation, rule failures
  Apply phase and GeneratedObjectStore tile parents
"""

import os
import sys
import threading
import traceback

# Ensure the project root is on the path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from biome_builder.generator import (TileState, EcotopeGeneratorTile,
                                     EcotopeGeneratorTileLayer, tile_seed)
from biome_builder.resources import (AssetReference, EcotopeAsset, EcotopeDefinition,
                                     EcotopeLayer)
from biome_builder.rules import LayerRule, create_global_rule, create_layer_rule
from biome_builder.scene import GENERATED_PREFIX, GeneratedObjectStore, InMemoryScene
from biome_builder.terrain import HeightfieldTerrain
from biome_builder.type_map import BiomeTypeMap, EcotopeSlots


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []

TERRAIN_SIZE = 160.0
TILE_EXTENTS = (80.0, 80.0)


def _test(name, fn):
    """Run a test function, track pass/fail."""
    global _PASSED, _FAILED
    try:
        fn()
        _PASSED += 1
        print("  PASS  {}".format(name))
    except Exception as e:
        _FAILED += 1
        _ERRORS.append((name, e))
        print("  FAIL  {} -- {}".format(name, e))
        traceback.print_exc()


class _SetEvent(LayerRule):
    """Sets an event when executed, to cancel a tile mid-generation."""

    TYPE = "set_event"

    def __init__(self, event):
        super().__init__()
        self.event = event

    def execute(self, state):
        self.event.set()


class _Explode(LayerRule):
    TYPE = "explode"

    def execute(self, state):
        raise ValueError("rule failed")


def _ecotope(name, asset_name, extra_rules=(), footprint=5.0):
    assets = [
        AssetReference(EcotopeAsset(asset_name, models=["models/{}.vmdl".format(asset_name)],
                                    footprint_radius=footprint, collision_radius=1.0)),
        AssetReference(EcotopeAsset(asset_name + "_small",
                                    models=["models/{}_small.vmdl".format(asset_name)],
                                    footprint_radius=footprint * 0.5)),
    ]
    rules = [create_layer_rule("poisson_distribution"),
             create_layer_rule("random_yaw")] + list(extra_rules)
    return EcotopeDefinition(name, layers=[EcotopeLayer("Main", assets, rules)],
                             global_rules=[create_global_rule("remove_overlapping_footprints")])


def _world(extra_rules=()):
    """
    160 unit terrain split into 2x2 tiles.  Tile (0, 0) holds forest (1)
    on its left half and meadow (2) on its right half; tile (1, 1) is
    unpainted.
    """
    terrain = HeightfieldTerrain.flat(16, TERRAIN_SIZE, 100.0)
    type_map = BiomeTypeMap(16)
    type_map.write_region((0, 0, 3, 7), 1)
    type_map.write_region((4, 0, 7, 7), 2)
    type_map.write_region((8, 0, 15, 7), 1)
    type_map.write_region((0, 8, 7, 15), 2)

    slots = EcotopeSlots()
    slots.add(_ecotope("Forest", "oak", extra_rules))
    slots.add(_ecotope("Meadow", "grass"))
    return terrain, type_map, slots


def _tile(tx, ty, seed=17, extra_rules=()):
    terrain, type_map, slots = _world(extra_rules)
    return EcotopeGeneratorTile(seed, tx, ty, TILE_EXTENTS, terrain, type_map, slots)


# ---------------------------------------------------------------------------
# Compute
# ---------------------------------------------------------------------------

def test_tile_seed():
    assert tile_seed(5, 0, 0) == 5
    assert tile_seed(5, 2, 3) == 18


def test_compute_containment():
    tile = _tile(0, 0)
    descriptors = tile.compute()
    assert descriptors, "expected placements"

    expected = {"oak": 1, "oak_small": 1, "grass": 2, "grass_small": 2}
    seen = set()
    for d in descriptors:
        value = tile.type_map.sample_world(d.position[0], d.position[1], TERRAIN_SIZE)
        assert value == expected[d.asset_name], (d.asset_name, d.position, value)
        assert d.tile == (0, 0)
        seen.add(d.asset_name)
    assert {"oak", "grass"} <= seen, seen


def test_compute_unpainted_tile():
    tile = _tile(1, 1)
    assert tile.compute() == ()
    assert tile.layers == []


def test_scan_ecotopes_origins():
    tile = _tile(1, 0)
    layers = tile.scan_ecotopes()
    assert [layer.ecotope.name for layer in layers] == ["Forest"]
    assert layers[0].local_origin == (80.0, 0.0, 0.0)
    assert layers[0].world_origin == (80.0, 0.0, 0.0)
    assert layers[0].slot_value == 1


def test_compute_is_deterministic():
    a = _tile(0, 0, seed=99).compute()
    b = _tile(0, 0, seed=99).compute()
    assert a == b
    c = _tile(0, 0, seed=100).compute()
    assert a != c


def test_merge_assigns_sequential_ids():
    terrain, type_map, slots = _world()
    forest = slots.get(1).ecotope
    layer = EcotopeGeneratorTileLayer(3, (0, 0), forest, 1, TILE_EXTENTS,
                                      (0.0, 0.0, 0.0), (0.0, 0.0, 0.0), terrain, type_map)
    assert layer.generate_states()
    cloud = layer.merge()

    assert [p.id for p in cloud] == list(range(len(cloud)))
    counts = [len(state.points) for state in layer.states]
    assert sum(counts) == len(cloud)
    indices = [p.asset_index for p in cloud]
    assert indices == sorted(indices)
    assert indices.count(0) == counts[0]


def test_descriptors_use_picked_model():
    tile = _tile(0, 0)
    for d in tile.compute():
        assert d.model == "models/{}.vmdl".format(d.asset_name)
        assert 0.0 <= d.rotation[1] < 360.0


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

def test_state_transitions():
    tile = _tile(0, 0)
    assert tile.state == TileState.IDLE
    descriptors = tile.compute()
    assert tile.state == TileState.APPLYING_GLOBAL_RULES

    store = GeneratedObjectStore(InMemoryScene())
    created = tile.apply(descriptors, store)
    assert created == len(descriptors)
    assert tile.state == TileState.DONE


def test_cancel_before_compute():
    event = threading.Event()
    event.set()
    tile = _tile(0, 0)
    assert tile.compute(event) is None
    assert tile.state == TileState.CANCELLED


def test_cancel_between_rules():
    event = threading.Event()
    tile = _tile(0, 0, extra_rules=[_SetEvent(event)])
    assert tile.compute(event) is None
    assert tile.state == TileState.CANCELLED


def test_rule_exception_propagates():
    tile = _tile(0, 0, extra_rules=[_Explode()])
    try:
        tile.compute()
    except ValueError as e:
        assert "rule failed" in str(e)
    else:
        raise AssertionError("Expected ValueError")


def test_iter_apply_cancels_between_objects():
    tile = _tile(0, 0)
    descriptors = tile.compute()
    assert len(descriptors) > 1

    event = threading.Event()
    store = GeneratedObjectStore(InMemoryScene())
    steps = tile.iter_apply(descriptors, store, event)
    next(steps)
    event.set()
    assert list(steps) == []
    assert len(store.tile_objects((0, 0))) == 1
    assert tile.state == TileState.CANCELLED


def test_generate_replaces_tile_objects():
    scene = InMemoryScene()
    store = GeneratedObjectStore(scene)

    first = _tile(0, 0).generate(store)
    assert first > 0
    second = _tile(0, 0).generate(store)
    assert second == first
    assert len(store.tile_objects((0, 0))) == first
    assert scene.destroyed_count == first


# ---------------------------------------------------------------------------
# Object store
# ---------------------------------------------------------------------------

def test_tile_parent_idempotent():
    store = GeneratedObjectStore(InMemoryScene())
    a = store.get_tile_parent((3, 7))
    assert store.get_tile_parent((3, 7)) is a
    assert store.get_tile_parent((7, 3)) is not a
    assert a.name == "{} Tile Storage 3, 7".format(GENERATED_PREFIX)
    assert a.parent is store.root


def test_tile_parent_recreated_after_destroy():
    scene = InMemoryScene()
    store = GeneratedObjectStore(scene)
    a = store.get_tile_parent((1, 1))
    scene.destroy(a)
    b = store.get_tile_parent((1, 1))
    assert b is not a
    assert scene.is_valid(b)


def test_instantiate_fields():
    tile = _tile(0, 0)
    descriptor = tile.compute()[0]
    store = GeneratedObjectStore(InMemoryScene())
    obj = store.instantiate(descriptor)
    assert obj.name == "{} {}".format(GENERATED_PREFIX, descriptor.asset_name)
    assert obj.is_static
    assert obj.position == descriptor.position
    assert obj.parent is store.get_tile_parent((0, 0))


def test_iter_delete_tile_newest_first():
    scene = InMemoryScene()
    store = GeneratedObjectStore(scene)
    parent = store.get_tile_parent((0, 0))
    children = [scene.create_object(parent, "obj{}".format(i)) for i in range(3)]

    deleted = list(store.iter_delete_tile((0, 0)))
    assert deleted == list(reversed(children))
    assert store.tile_objects((0, 0)) == []


def test_iter_delete_all_cancel():
    scene = InMemoryScene()
    store = GeneratedObjectStore(scene)
    for tile in ((0, 0), (0, 1)):
        parent = store.get_tile_parent(tile)
        for i in range(3):
            scene.create_object(parent, "obj{}".format(i))

    event = threading.Event()
    steps = store.iter_delete_all(event)
    next(steps)
    event.set()
    assert list(steps) == []
    remaining = sum(len(store.tile_objects(t)) for t in store.tile_coords())
    assert remaining == 5
    assert store.delete_all() == 5


def test_scene_rejects_foreign_thread():
    scene = InMemoryScene()
    errors = []

    def worker():
        try:
            scene.create_group("from worker")
        except RuntimeError as e:
            errors.append(e)

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()
    assert len(errors) == 1


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    global _PASSED, _FAILED

    print("=" * 70)
    print("biome_builder Generator Test Suite")
    print("=" * 70)

    print("\n--- Compute ---")
    _test("tile_seed", test_tile_seed)
    _test("compute_containment", test_compute_containment)
    _test("compute_unpainted_tile", test_compute_unpainted_tile)
    _test("scan_ecotopes_origins", test_scan_ecotopes_origins)
    _test("compute_is_deterministic", test_compute_is_deterministic)
    _test("merge_assigns_sequential_ids", test_merge_assigns_sequential_ids)
    _test("descriptors_use_picked_model", test_descriptors_use_picked_model)

    print("\n--- State machine ---")
    _test("state_transitions", test_state_transitions)
    _test("cancel_before_compute", test_cancel_before_compute)
    _test("cancel_between_rules", test_cancel_between_rules)
    _test("rule_exception_propagates", test_rule_exception_propagates)
    _test("iter_apply_cancels_between_objects", test_iter_apply_cancels_between_objects)
    _test("generate_replaces_tile_objects", test_generate_replaces_tile_objects)

    print("\n--- Object store ---")
    _test("tile_parent_idempotent", test_tile_parent_idempotent)
    _test("tile_parent_recreated_after_destroy", test_tile_parent_recreated_after_destroy)
    _test("instantiate_fields", test_instantiate_fields)
    _test("iter_delete_tile_newest_first", test_iter_delete_tile_newest_first)
    _test("iter_delete_all_cancel", test_iter_delete_all_cancel)
    _test("scene_rejects_foreign_thread", test_scene_rejects_foreign_thread)

    print("\n" + "=" * 70)
    print("Results: {} passed, {} failed".format(_PASSED, _FAILED))

    if _ERRORS:
        print("\nFailures:")
        for name, err in _ERRORS:
            print("  {} -- {}".format(name, err))

    print("=" * 70)
    return 0 if _FAILED == 0 else 1


if __name__ == '__main__':
    sys.exit(main())

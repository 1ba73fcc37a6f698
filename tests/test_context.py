"""
Tests for biome_builder.context and biome_builder.biomes.

Tests:
  GenerationContext: completion, cancellation and merge-on-repaint,
                     progress reporting, failed tiles, owner-thread apply
  TerrainBiomes: setup errors, painting, undo, tile helpers, teardown
  populate_terrain high-level API
"""

import os
import sys
import threading
import time
import traceback

# Ensure the project root is on the path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

import numpy as np

from biome_builder import populate_terrain
from biome_builder.biomes import TerrainBiomes
from biome_builder.context import GenerationContext
from biome_builder.resources import (AssetReference, EcotopeAsset, EcotopeDefinition,
                                     EcotopeLayer)
from biome_builder.rules import LayerRule, create_global_rule, create_layer_rule
from biome_builder.scene import InMemoryScene
from biome_builder.terrain import HeightfieldTerrain


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []

# Generous bound for a pump/wait that should finish in well under a second
WAIT_SECONDS = 60.0


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


class _Explode(LayerRule):
    TYPE = "explode"

    def execute(self, state):
        raise ValueError("rule failed")


_SLOW_LOCK = threading.Lock()
_SLOW_CALLS = {"entered": 0, "exited": 0}


class _Slow(LayerRule):
    TYPE = "slow"

    def execute(self, state):
        with _SLOW_LOCK:
            _SLOW_CALLS["entered"] += 1
        time.sleep(0.05)
        with _SLOW_LOCK:
            _SLOW_CALLS["exited"] += 1


def _forest(extra_rules=()):
    oak = EcotopeAsset("oak", models=["models/oak.vmdl"], viability=2,
                       footprint_radius=6.0, collision_radius=2.0, jitter=3.0)
    rules = [create_layer_rule("poisson_distribution"),
             create_layer_rule("random_yaw"),
             create_layer_rule("align_to_terrain")] + list(extra_rules)
    return EcotopeDefinition(
        "Forest",
        layers=[EcotopeLayer("Trees", [AssetReference(oak)], rules)],
        global_rules=[create_global_rule("remove_overlapping_footprints"),
                      create_global_rule({"type": "apply_tags", "tags": ["generated"]})],
    )


def _biomes(tiles=(2, 2), resolution=16, size=160.0, max_workers=8, extra_rules=(),
            paint=True):
    terrain = HeightfieldTerrain.flat(resolution, size, 50.0, height=0.2)
    biomes = TerrainBiomes(terrain, seed=42, tiles=tiles, max_workers=max_workers)
    value = biomes.add_ecotope(_forest(extra_rules))
    assert biomes.setup()
    if paint:
        biomes.type_map.write_region((0, 0, resolution - 1, resolution - 1), value)
    return biomes


def _pump_until(context, predicate, limit=10000):
    for _ in range(limit):
        if predicate():
            return True
        if context.is_complete:
            return predicate()
        context.pump(max_items=1, block=True, timeout=5)
    return predicate()


def _generated_count(biomes):
    return sum(len(biomes.store.tile_objects(t)) for t in biomes.all_tiles())


# ---------------------------------------------------------------------------
# GenerationContext
# ---------------------------------------------------------------------------

def test_generate_all_completes():
    biomes = _biomes()
    context = biomes.generate_all()
    assert context is biomes.generation_context
    assert context.wait(WAIT_SECONDS)
    assert context.tiles_still_to_generate == []
    assert context.progress == (4, 4)
    assert context.failed_tiles == {}

    count = _generated_count(biomes)
    assert count > 0
    for obj in biomes.scene.iter_objects(biomes.store.root):
        if obj.model is not None:
            assert obj.tags == frozenset(["generated"])
            assert abs(obj.position[2] - 10.0) < 1e-3


def test_regenerate_is_deterministic():
    biomes = _biomes()
    biomes.generate_all().wait(WAIT_SECONDS)
    first = sorted(o.position for o in biomes.scene.iter_objects(biomes.store.root)
                   if o.model is not None)

    biomes.regenerate_tiles(biomes.all_tiles()).wait(WAIT_SECONDS)
    second = sorted(o.position for o in biomes.scene.iter_objects(biomes.store.root)
                    if o.model is not None)
    assert first == second


def test_cancel_and_merge_remaining():
    biomes = _biomes(tiles=(10, 1), resolution=20, size=200.0, max_workers=8)
    context = biomes.generate_all()
    assert _pump_until(context, lambda: context.progress[0] >= 3)
    assert context.progress[0] == 3

    context.cancel()
    assert context.is_complete
    assert context.is_cancelled
    remaining = context.tiles_still_to_generate
    assert len(remaining) == 7, remaining

    requested = [(0, 0), (9, 0), (42, 0)]
    follow_up = biomes.regenerate_tiles(requested)
    tiles = follow_up.requested_tiles
    assert len(tiles) == len(set(tiles))
    assert set(tiles) == set(remaining) | {(0, 0), (9, 0)}
    assert follow_up.wait(WAIT_SECONDS)
    assert follow_up.tiles_still_to_generate == []


def test_cancel_clear_remaining():
    biomes = _biomes()
    context = biomes.generate_all()
    context.cancel(clear_remaining_list=True)
    assert context.is_complete
    assert context.tiles_still_to_generate == []
    # Nothing left to pump
    assert context.pump() == 0


def test_cancel_twice_clears_remaining():
    biomes = _biomes()
    context = biomes.generate_all()
    context.cancel()
    assert len(context.tiles_still_to_generate) == 4

    context.cancel(clear_remaining_list=True)
    assert context.tiles_still_to_generate == []


def test_progress_observer():
    biomes = _biomes()
    calls = []
    biomes.progress_observer = lambda total, current: calls.append((total, current))
    context = biomes.generate_all()
    assert context.wait(WAIT_SECONDS)

    assert calls
    assert calls[-1] == (4, 4)
    currents = [c for _, c in calls]
    assert currents == sorted(currents)


def test_failed_tiles_recorded():
    biomes = _biomes(extra_rules=[_Explode()])
    context = biomes.generate_all()
    assert context.wait(WAIT_SECONDS)
    assert sorted(context.failed_tiles) == biomes.all_tiles()
    assert all(isinstance(e, ValueError) for e in context.failed_tiles.values())
    assert context.tiles_still_to_generate == []


def test_unpainted_tiles_complete_empty():
    biomes = _biomes(paint=False)
    context = biomes.generate_all()
    assert context.wait(WAIT_SECONDS)
    assert _generated_count(biomes) == 0
    assert context.tiles_still_to_generate == []


def test_empty_context_completes():
    biomes = _biomes()
    context = GenerationContext(biomes)
    context.generate()
    assert context.is_complete
    assert context.progress == (0, 0)


def test_add_tile_after_start():
    biomes = _biomes()
    context = GenerationContext(biomes)
    assert context.add_tile(1, 0) == (1, 0)
    assert context.add_tile((1, 0)) == (1, 0)
    assert context.requested_tiles == [(1, 0)]
    context.generate()
    try:
        context.add_tile(0, 0)
    except RuntimeError:
        pass
    else:
        raise AssertionError("Expected RuntimeError")
    context.wait(WAIT_SECONDS)


def test_scene_only_mutated_on_owner_thread():
    # InMemoryScene raises on foreign-thread writes; any such write would
    # surface as a failed tile.
    scene = InMemoryScene(enforce_owner_thread=True)
    terrain = HeightfieldTerrain.flat(16, 160.0, 50.0)
    biomes = TerrainBiomes(terrain, scene, seed=7, tiles=(4, 4), max_workers=4)
    value = biomes.add_ecotope(_forest())
    biomes.setup()
    biomes.type_map.write_region((0, 0, 15, 15), value)

    context = biomes.generate_all()
    assert context.wait(WAIT_SECONDS)
    assert context.failed_tiles == {}
    assert scene.created_count > 0


# ---------------------------------------------------------------------------
# TerrainBiomes
# ---------------------------------------------------------------------------

def test_setup_error_returns_none():
    biomes = TerrainBiomes(None)
    assert biomes.setup() is False
    assert biomes.generate_all() is None
    assert biomes.regenerate_tiles([(0, 0)]) is None

    broken = TerrainBiomes(HeightfieldTerrain(None, 100.0, 10.0))
    assert broken.generate_all() is None


def test_setup_picks_seed():
    biomes = TerrainBiomes(HeightfieldTerrain.flat(8, 80.0, 10.0), seed=0)
    assert biomes.setup()
    assert biomes.seed != 0
    assert biomes.type_map.resolution == 8


def test_tile_helpers():
    terrain = HeightfieldTerrain.flat(16, 160.0, 50.0, origin=(-80.0, -80.0, 0.0))
    biomes = TerrainBiomes(terrain, seed=1, tiles=(4, 2))
    assert biomes.tile_extents == (40.0, 80.0)
    assert biomes.world_position_to_tile((-80.0, -80.0)) == (0, 0)
    assert biomes.world_position_to_tile((79.0, 79.0)) == (3, 1)
    assert biomes.is_tile_valid((3, 1))
    assert not biomes.is_tile_valid((4, 0))
    assert len(biomes.all_tiles()) == 8


def test_tiles_for_region():
    biomes = _biomes(paint=False)
    assert biomes.tiles_for_region((0, 0, 3, 3)) == [(0, 0)]
    assert biomes.tiles_for_region((6, 6, 9, 9)) == [(0, 0), (0, 1), (1, 0), (1, 1)]


def test_paint_and_undo():
    biomes = _biomes(paint=False)
    edit = biomes.paint((-2, -2, 3, 3), 1)
    assert edit.rect == (0, 0, 3, 3)
    assert int(edit.before.sum()) == 0
    assert edit.after.tolist() == [[1] * 4] * 4
    assert edit.tiles == [(0, 0)]
    assert biomes.type_map.cell_value(3, 3) == 1

    biomes.undo_paint(edit)
    assert int(biomes.type_map.data.sum()) == 0


def test_paint_cancels_and_regenerates():
    biomes = _biomes()
    context = biomes.generate_all()
    assert not context.is_complete

    biomes.paint((0, 0, 1, 1), 0, auto_regenerate=True)
    assert context.is_cancelled
    assert context.is_complete

    follow_up = biomes.generation_context
    assert follow_up is not context
    assert sorted(follow_up.requested_tiles) == biomes.all_tiles()
    assert follow_up.wait(WAIT_SECONDS)


def test_paint_brush_at_map_edge():
    biomes = _biomes(paint=False)
    brush = np.arange(1, 10, dtype=np.uint8).reshape(3, 3)
    edit = biomes.paint((-1, -1, 1, 1), brush)
    assert edit.rect == (0, 0, 1, 1)
    assert edit.after.tolist() == brush[1:, 1:].tolist()

    biomes.undo_paint(edit)
    assert int(biomes.type_map.data.sum()) == 0


def test_paint_joins_cancelled_workers():
    _SLOW_CALLS.update(entered=0, exited=0)
    biomes = _biomes(extra_rules=[_Slow()])
    context = biomes.generate_all()
    deadline = time.monotonic() + WAIT_SECONDS
    while _SLOW_CALLS["entered"] == 0 and time.monotonic() < deadline:
        time.sleep(0.005)
    assert _SLOW_CALLS["entered"] > 0

    biomes.paint((0, 0, 1, 1), 0)
    assert context.is_cancelled
    with _SLOW_LOCK:
        assert _SLOW_CALLS["entered"] == _SLOW_CALLS["exited"]


def test_teardown_after_paint_drops_stale_tiles():
    biomes = _biomes()
    context = biomes.generate_all()
    biomes.paint((0, 0, 1, 1), 1)
    assert context.is_cancelled
    assert len(context.tiles_still_to_generate) == 4

    biomes.teardown()
    assert context.tiles_still_to_generate == []
    assert biomes.setup()
    follow_up = biomes.regenerate_tiles([(1, 1)])
    assert follow_up.requested_tiles == [(1, 1)]
    assert follow_up.wait(WAIT_SECONDS)


def test_teardown_keeps_type_map():
    biomes = _biomes(paint=False)
    biomes.paint((2, 2, 5, 5), 1)
    snapshot = biomes.type_map.data.copy()

    biomes.teardown()
    assert not biomes.is_ready
    assert biomes.setup()
    assert np.array_equal(biomes.type_map.data, snapshot)


def test_reset_clears_everything():
    biomes = _biomes()
    biomes.generate_all().wait(WAIT_SECONDS)
    assert _generated_count(biomes) > 0

    assert biomes.reset()
    assert _generated_count(biomes) == 0
    assert int(biomes.type_map.data.sum()) == 0
    assert biomes.seed != 0


def test_slot_operations():
    biomes = _biomes(paint=False)
    forest = biomes.slots.get(1).ecotope
    other = EcotopeDefinition("Desert")
    assert biomes.add_ecotope(forest) is None
    assert biomes.add_ecotope(other) == 2
    biomes.clear_ecotope(other)
    assert not biomes.slots.is_valid(2)
    assert biomes.replace_ecotope(2, EcotopeDefinition("Tundra"))
    assert biomes.remove_ecotope(value=2) == 1


# ---------------------------------------------------------------------------
# High-level API
# ---------------------------------------------------------------------------

def test_populate_terrain():
    heightmap = np.zeros((16, 16))
    painted = np.ones((16, 16), dtype=np.uint8)
    result = populate_terrain(heightmap, 160.0, 50.0, painted, [_forest()],
                              seed=3, tiles=(2, 2), max_workers=2, timeout=WAIT_SECONDS)
    assert result['complete']
    assert result['failed_tiles'] == {}
    assert result['objects'] > 0
    assert result['context'].tiles_still_to_generate == []


def test_populate_terrain_resolution_mismatch():
    try:
        populate_terrain(np.zeros((16, 16)), 160.0, 50.0, np.zeros((8, 8)), [_forest()])
    except ValueError:
        pass
    else:
        raise AssertionError("Expected ValueError")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    global _PASSED, _FAILED

    print("=" * 70)
    print("biome_builder Generation Context Test Suite")
    print("=" * 70)

    print("\n--- GenerationContext ---")
    _test("generate_all_completes", test_generate_all_completes)
    _test("regenerate_is_deterministic", test_regenerate_is_deterministic)
    _test("cancel_and_merge_remaining", test_cancel_and_merge_remaining)
    _test("cancel_clear_remaining", test_cancel_clear_remaining)
    _test("cancel_twice_clears_remaining", test_cancel_twice_clears_remaining)
    _test("progress_observer", test_progress_observer)
    _test("failed_tiles_recorded", test_failed_tiles_recorded)
    _test("unpainted_tiles_complete_empty", test_unpainted_tiles_complete_empty)
    _test("empty_context_completes", test_empty_context_completes)
    _test("add_tile_after_start", test_add_tile_after_start)
    _test("scene_only_mutated_on_owner_thread", test_scene_only_mutated_on_owner_thread)

    print("\n--- TerrainBiomes ---")
    _test("setup_error_returns_none", test_setup_error_returns_none)
    _test("setup_picks_seed", test_setup_picks_seed)
    _test("tile_helpers", test_tile_helpers)
    _test("tiles_for_region", test_tiles_for_region)
    _test("paint_and_undo", test_paint_and_undo)
    _test("paint_cancels_and_regenerates", test_paint_cancels_and_regenerates)
    _test("paint_brush_at_map_edge", test_paint_brush_at_map_edge)
    _test("paint_joins_cancelled_workers", test_paint_joins_cancelled_workers)
    _test("teardown_after_paint_drops_stale_tiles", test_teardown_after_paint_drops_stale_tiles)
    _test("teardown_keeps_type_map", test_teardown_keeps_type_map)
    _test("reset_clears_everything", test_reset_clears_everything)
    _test("slot_operations", test_slot_operations)

    print("\n--- populate_terrain ---")
    _test("populate_terrain", test_populate_terrain)
    _test("populate_terrain_resolution_mismatch", test_populate_terrain_resolution_mismatch)

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

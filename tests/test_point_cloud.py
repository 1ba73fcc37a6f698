"""
Tests for biome_builder.point_cloud.

Tests:
  AssetPoint copy semantics
  PointCloud add / get / set / remove_at / remove_all / iteration
"""

import os
import sys
import random
import traceback

# Ensure the project root is on the path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from biome_builder.point_cloud import AssetPoint, PointCloud


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []


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


def _cloud(n=5):
    cloud = PointCloud(random.Random(1))
    for i in range(n):
        cloud.add(AssetPoint(position=(float(i), 0.0, 0.0), layer=i % 2, id=i))
    return cloud


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def test_point_defaults():
    p = AssetPoint()
    assert p.id == -1
    assert p.scale == 1.0
    assert p.rotation == (0.0, 0.0, 0.0)
    assert p.tint == (1.0, 1.0, 1.0, 1.0)
    assert p.tags == frozenset()


def test_point_copy_is_independent():
    p = AssetPoint(position=(1.0, 2.0, 3.0), tags=["a"])
    q = p.copy()
    assert q == p
    q.scale = 2.0
    assert p.scale == 1.0
    assert q != p


def test_get_returns_copy():
    cloud = _cloud()
    p = cloud[2]
    p.scale = 5.0
    assert cloud[2].scale == 1.0


def test_set_stores_copy():
    cloud = _cloud()
    p = cloud[1]
    p.scale = 3.0
    cloud[1] = p
    p.scale = 4.0
    assert cloud[1].scale == 3.0


def test_remove_at_and_count():
    cloud = _cloud()
    cloud.remove_at(0)
    assert cloud.count == 4
    assert len(cloud) == 4
    assert cloud[0].id == 1


def test_remove_all():
    cloud = _cloud(6)
    removed = cloud.remove_all(lambda p: p.layer == 1)
    assert removed == 3
    assert [p.id for p in cloud] == [0, 2, 4]


def test_points_snapshot_and_clear():
    cloud = _cloud(3)
    snapshot = cloud.points
    assert isinstance(snapshot, tuple)
    assert [p.id for p in snapshot] == [0, 1, 2]
    cloud.clear()
    assert len(cloud) == 0
    assert len(snapshot) == 3


def test_distance_helpers():
    a = AssetPoint(position=(0.0, 0.0, 0.0))
    b = AssetPoint(position=(3.0, 4.0, 0.0))
    assert a.distance_to(b) == 5.0
    assert a.distance_sq_to(b) == 25.0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    global _PASSED, _FAILED

    print("=" * 70)
    print("biome_builder Point Cloud Test Suite")
    print("=" * 70)

    _test("point_defaults", test_point_defaults)
    _test("point_copy_is_independent", test_point_copy_is_independent)
    _test("get_returns_copy", test_get_returns_copy)
    _test("set_stores_copy", test_set_stores_copy)
    _test("remove_at_and_count", test_remove_at_and_count)
    _test("remove_all", test_remove_all)
    _test("points_snapshot_and_clear", test_points_snapshot_and_clear)
    _test("distance_helpers", test_distance_helpers)

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

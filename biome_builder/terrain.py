"""
Terrain query surface used by the terrain and collision rules.

:class:`Terrain` is the interface the generator consumes: size, height
range, storage resolution, and ray / sphere traces against the collision
geometry.  :class:`HeightfieldTerrain` implements it over a numpy
heightmap plus a list of tagged sphere colliders, which is enough for
headless generation and tests.

Rotations are ``(pitch, yaw, roll)`` tuples in degrees.
"""

import logging
import math

log = logging.getLogger(__name__)

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for biome_builder.terrain. "
        "Install it with: pip install numpy"
    )


UP = (0.0, 0.0, 1.0)

TERRAIN_TAG = "terrain"

# Step length, in heightmap cells, used when marching a trace over the terrain
_MARCH_STEP_CELLS = 0.5


class SetupError(RuntimeError):
    """Terrain, storage or asset references are missing or invalid."""


# ---------------------------------------------------------------------------
# Vector / rotation helpers
# ---------------------------------------------------------------------------

def add_scaled(p, direction, amount):
    return (p[0] + direction[0] * amount,
            p[1] + direction[1] * amount,
            p[2] + direction[2] * amount)


def angle_from_up(normal):
    """Angle in degrees between *normal* and world up."""
    length = math.sqrt(normal[0] ** 2 + normal[1] ** 2 + normal[2] ** 2)
    if length <= 0.0:
        return 0.0
    cos_a = max(-1.0, min(1.0, normal[2] / length))
    return math.degrees(math.acos(cos_a))


def rotation_from_normal(normal, yaw=0.0):
    """
    Rotation whose up axis follows *normal*, keeping *yaw*.

    Pitch tilts towards +x, roll towards +y.
    """
    nx, ny, nz = normal
    pitch = math.degrees(math.atan2(nx, nz))
    roll = math.degrees(math.atan2(ny, nz))
    return (pitch, yaw, roll)


def lerp_rotation(a, b, t):
    """Component-wise blend of two (pitch, yaw, roll) rotations."""
    return tuple(x + (y - x) * t for x, y in zip(a, b))


# ---------------------------------------------------------------------------
# Trace results and colliders
# ---------------------------------------------------------------------------

class TraceHit:
    """Result of a trace: where it hit, the surface normal, what it hit."""

    __slots__ = ('position', 'normal', 'distance', 'is_terrain', 'tags')

    def __init__(self, position, normal, distance, is_terrain=False, tags=frozenset()):
        self.position = tuple(position)
        self.normal = tuple(normal)
        self.distance = distance
        self.is_terrain = is_terrain
        self.tags = frozenset(tags)

    def __repr__(self):
        return "TraceHit({}, terrain={}, tags={})".format(
            self.position, self.is_terrain, sorted(self.tags))


class SphereCollider:
    """Static collision sphere with a tag set (e.g. a rock or a building)."""

    __slots__ = ('center', 'radius', 'tags')

    def __init__(self, center, radius, tags=()):
        self.center = tuple(center)
        self.radius = float(radius)
        self.tags = frozenset(tags)


def tags_pass(tags, with_any_tags=(), with_all_tags=(), without_tags=()):
    """Apply the with-any / with-all / without tag filters to *tags*."""
    tags = frozenset(tags)
    if with_any_tags and not tags.intersection(with_any_tags):
        return False
    if with_all_tags and not frozenset(with_all_tags).issubset(tags):
        return False
    if without_tags and tags.intersection(without_tags):
        return False
    return True


def _segment_closest(start, end, point):
    """Parameter t in [0, 1] of the closest point on start->end to *point*."""
    d = np.subtract(end, start)
    length_sq = float(np.dot(d, d))
    if length_sq <= 0.0:
        return 0.0
    t = float(np.dot(np.subtract(point, start), d)) / length_sq
    return max(0.0, min(1.0, t))


# ---------------------------------------------------------------------------
# Terrain interface
# ---------------------------------------------------------------------------

class Terrain:
    """
    Interface consumed by the generator.

    Attributes:
        terrain_size:   World size of the (square) terrain.
        terrain_height: Height range; traces start this far above a point.
        resolution:     Storage resolution; the type map uses the same one.
        origin:         World position of the terrain's minimum corner.
    """

    terrain_size = 0.0
    terrain_height = 0.0
    resolution = 0
    origin = (0.0, 0.0, 0.0)

    def validate(self):
        """Raise :class:`SetupError` if the terrain cannot drive generation."""
        if self.terrain_size is None or self.terrain_size <= 0:
            raise SetupError("Terrain has no size")
        if not self.resolution or self.resolution <= 0:
            raise SetupError("Terrain has no storage")

    def trace_ray(self, start, end):
        """All hits along start -> end, nearest first."""
        raise NotImplementedError

    def trace_sphere(self, radius, start, end, with_any_tags=(),
                     with_all_tags=(), without_tags=()):
        """Nearest hit of a sphere swept from start to end, or None."""
        raise NotImplementedError


class HeightfieldTerrain(Terrain):
    """
    Square heightfield terrain backed by a numpy array.

    *heightmap* holds normalised heights in [0, 1]; world height is
    ``origin.z + h * terrain_height``.  Row index is y, column index is x.
    """

    def __init__(self, heightmap, terrain_size, terrain_height,
                 origin=(0.0, 0.0, 0.0), resolution=None, colliders=None):
        self.heightmap = None if heightmap is None else np.asarray(heightmap, dtype=np.float64)
        self.terrain_size = float(terrain_size)
        self.terrain_height = float(terrain_height)
        self.origin = tuple(origin)
        if resolution is None and self.heightmap is not None and self.heightmap.ndim == 2:
            resolution = self.heightmap.shape[0]
        self.resolution = resolution or 0
        self.colliders = list(colliders or [])

    @classmethod
    def flat(cls, resolution, terrain_size, terrain_height, height=0.0, **kwargs):
        return cls(np.full((resolution, resolution), height), terrain_size,
                   terrain_height, resolution=resolution, **kwargs)

    def validate(self):
        if self.heightmap is None:
            raise SetupError("Terrain has no heightmap storage")
        if self.heightmap.ndim != 2 or self.heightmap.shape[0] != self.heightmap.shape[1]:
            raise SetupError("Terrain heightmap must be square, got shape {}".format(
                self.heightmap.shape))
        super().validate()

    def add_collider(self, center, radius, tags=()):
        collider = SphereCollider(center, radius, tags)
        self.colliders.append(collider)
        return collider

    # ------------------------------------------------------------------
    # Height sampling
    # ------------------------------------------------------------------

    def _to_pixel(self, x, y):
        res = self.heightmap.shape[0]
        col_f = (x - self.origin[0]) / self.terrain_size * (res - 1)
        row_f = (y - self.origin[1]) / self.terrain_size * (res - 1)
        col_f = min(max(col_f, 0.0), res - 1.0)
        row_f = min(max(row_f, 0.0), res - 1.0)
        return col_f, row_f

    def height_at(self, x, y):
        """World height at (x, y) using bilinear interpolation."""
        hm = self.heightmap
        res = hm.shape[0]
        col_f, row_f = self._to_pixel(x, y)

        c0 = int(col_f)
        r0 = int(row_f)
        c1 = min(c0 + 1, res - 1)
        r1 = min(r0 + 1, res - 1)
        fc = col_f - c0
        fr = row_f - r0

        v00 = float(hm[r0, c0])
        v01 = float(hm[r0, c1])
        v10 = float(hm[r1, c0])
        v11 = float(hm[r1, c1])

        h = (v00 * (1 - fr) * (1 - fc) +
             v01 * (1 - fr) * fc +
             v10 * fr * (1 - fc) +
             v11 * fr * fc)
        return self.origin[2] + h * self.terrain_height

    def normal_at(self, x, y):
        """Unit surface normal at (x, y) from central differences."""
        res = self.heightmap.shape[0]
        step = self.terrain_size / max(res - 1, 1)
        dzdx = (self.height_at(x + step, y) - self.height_at(x - step, y)) / (2.0 * step)
        dzdy = (self.height_at(x, y + step) - self.height_at(x, y - step)) / (2.0 * step)
        n = np.array([-dzdx, -dzdy, 1.0])
        n /= np.linalg.norm(n)
        return (float(n[0]), float(n[1]), float(n[2]))

    def slope_at(self, x, y):
        """Slope in degrees at (x, y)."""
        return angle_from_up(self.normal_at(x, y))

    # ------------------------------------------------------------------
    # Traces
    # ------------------------------------------------------------------

    def _march_terrain(self, start, end, clearance=0.0):
        """First parameter t where the segment dips below terrain + clearance."""
        start = np.asarray(start, dtype=np.float64)
        end = np.asarray(end, dtype=np.float64)
        delta = end - start
        length = float(np.linalg.norm(delta))
        cell = self.terrain_size / max(self.heightmap.shape[0] - 1, 1)

        def below(t):
            p = start + delta * t
            return p[2] - clearance <= self.height_at(p[0], p[1])

        if length <= 0.0:
            return 0.0 if below(0.0) else None

        steps = max(1, int(math.ceil(length / (cell * _MARCH_STEP_CELLS))))
        prev = 0.0
        if below(0.0):
            return 0.0
        for i in range(1, steps + 1):
            t = i / float(steps)
            if below(t):
                lo, hi = prev, t
                for _ in range(24):
                    mid = (lo + hi) * 0.5
                    if below(mid):
                        hi = mid
                    else:
                        lo = mid
                return hi
            prev = t
        return None

    def trace_ray(self, start, end):
        hits = []
        length = math.sqrt(sum((e - s) ** 2 for s, e in zip(start, end)))

        t = self._march_terrain(start, end)
        if t is not None:
            px = start[0] + (end[0] - start[0]) * t
            py = start[1] + (end[1] - start[1]) * t
            position = (px, py, self.height_at(px, py))
            hits.append(TraceHit(position, self.normal_at(px, py), t * length,
                                 is_terrain=True, tags=(TERRAIN_TAG,)))

        for collider in self.colliders:
            t = _segment_closest(start, end, collider.center)
            closest = np.add(start, np.subtract(end, start) * t)
            offset = closest - np.asarray(collider.center)
            if float(np.dot(offset, offset)) > collider.radius ** 2:
                continue
            # Step back along the ray to the sphere surface
            direction = np.subtract(end, start)
            dir_len = float(np.linalg.norm(direction))
            back = 0.0
            if dir_len > 0.0:
                direction = direction / dir_len
                back = math.sqrt(max(collider.radius ** 2 - float(np.dot(offset, offset)), 0.0))
            position = closest - (direction * back if dir_len > 0.0 else 0.0)
            normal = position - np.asarray(collider.center)
            norm = float(np.linalg.norm(normal))
            normal = tuple(normal / norm) if norm > 0.0 else UP
            hits.append(TraceHit(tuple(float(v) for v in position), normal,
                                 max(0.0, t * length - back), tags=collider.tags))

        hits.sort(key=lambda h: h.distance)
        return hits

    def trace_sphere(self, radius, start, end, with_any_tags=(),
                     with_all_tags=(), without_tags=()):
        best = None

        if tags_pass((TERRAIN_TAG,), with_any_tags, with_all_tags, without_tags):
            t = self._march_terrain(start, end, clearance=radius)
            if t is not None:
                length = math.sqrt(sum((e - s) ** 2 for s, e in zip(start, end)))
                px = start[0] + (end[0] - start[0]) * t
                py = start[1] + (end[1] - start[1]) * t
                best = TraceHit((px, py, self.height_at(px, py)), self.normal_at(px, py),
                                t * length, is_terrain=True, tags=(TERRAIN_TAG,))

        for collider in self.colliders:
            if not tags_pass(collider.tags, with_any_tags, with_all_tags, without_tags):
                continue
            t = _segment_closest(start, end, collider.center)
            closest = np.add(start, np.subtract(end, start) * t)
            offset = closest - np.asarray(collider.center)
            reach = radius + collider.radius
            if float(np.dot(offset, offset)) >= reach * reach:
                continue
            length = math.sqrt(sum((e - s) ** 2 for s, e in zip(start, end)))
            distance = t * length
            if best is None or distance < best.distance:
                norm = float(np.linalg.norm(offset))
                normal = tuple(float(v) for v in offset / norm) if norm > 0.0 else UP
                best = TraceHit(tuple(float(v) for v in closest), normal, distance,
                                tags=collider.tags)
        return best

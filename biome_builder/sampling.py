"""
Spatial samplers used by the ecotope distribution rules.

Provides the building blocks every distribution rule composes:

    - Bridson Poisson disk sampling over a rectangle or a circle
    - Regular grid sampling with optional uniform jitter
    - Ordered (Bayer) dithering tables for density down-selection
    - Seeded simplex noise and a normalised noise field for density,
      scale, tint and yaw modulation

All samplers are deterministic for a given ``random.Random`` instance (or
seed) and inputs.

Dependencies:
    numpy  - required for the pairwise post-filter
"""

import logging
import math
import random

log = logging.getLogger(__name__)

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for biome_builder.sampling. "
        "Install it with: pip install numpy"
    )


SQRT2 = math.sqrt(2.0)

# Candidates generated around an active sample before it is retired
DEFAULT_POINTS_PER_ITERATION = 30

# Bias scale applied to dither offsets; keeps density 1.0 fully populated
_DITHER_SCALE = 1.0 / 1.001


# ===================================================================
# Small numeric helpers
# ===================================================================

def lerp(a, b, t):
    """Linear interpolation between *a* and *b* (t is not clamped)."""
    return a + (b - a) * t


def random_range(rng, low, high):
    """Uniform float in [low, high) drawn from *rng*."""
    return low + (high - low) * rng.random()


def shuffle(items, rng):
    """Fisher-Yates shuffle of *items* in place using *rng*."""
    n = len(items)
    while n > 1:
        n -= 1
        k = rng.randint(0, n)
        items[k], items[n] = items[n], items[k]
    return items


# ===================================================================
# Poisson Disk Sampling
# ===================================================================

def poisson_disk_sampling(rng, top_left, lower_right, min_distance,
                          max_attempts=DEFAULT_POINTS_PER_ITERATION,
                          rejection_distance=None):
    """
    Bridson's Poisson disk sampling with a uniform background grid.

    Parameters:
        rng:                random.Random instance (for reproducibility).
        top_left:           (x, y) minimum corner of the domain.
        lower_right:        (x, y) maximum corner of the domain.
        min_distance:       Minimum distance between any two samples.
        max_attempts:       Candidates per active sample before rejection.
        rejection_distance: Optional radius around the domain centre;
                            samples outside it are rejected (circular
                            domains).

    Returns:
        List of (x, y) tuples.  Every pair is at least *min_distance*
        apart.
    """
    if rng is None:
        rng = random.Random()

    left, top = float(top_left[0]), float(top_left[1])
    right, bottom = float(lower_right[0]), float(lower_right[1])
    width = right - left
    height = bottom - top

    if min_distance <= 0 or width <= 0 or height <= 0:
        return []

    center_x = (left + right) * 0.5
    center_y = (top + bottom) * 0.5
    rejection_sq = None
    if rejection_distance is not None and rejection_distance > 0:
        rejection_sq = rejection_distance * rejection_distance

    def outside_rejection(x, y):
        if rejection_sq is None:
            return False
        return (x - center_x) ** 2 + (y - center_y) ** 2 > rejection_sq

    cell_size = min_distance / SQRT2
    grid_w = int(width / cell_size) + 1
    grid_h = int(height / cell_size) + 1
    grid = {}  # (gx, gy) -> point index
    min_dist_sq = min_distance * min_distance

    points = []
    active = []

    # Seed point
    while True:
        x0 = left + width * rng.random()
        y0 = top + height * rng.random()
        if not outside_rejection(x0, y0):
            break
    points.append((x0, y0))
    active.append(0)
    grid[(int((x0 - left) / cell_size), int((y0 - top) / cell_size))] = 0

    while active:
        idx = rng.randrange(len(active))
        px, py = points[active[idx]]
        found = False

        for _ in range(max_attempts):
            dist = min_distance + min_distance * rng.random()
            angle = 2.0 * math.pi * rng.random()
            nx = px + dist * math.sin(angle)
            ny = py + dist * math.cos(angle)

            if nx < left or nx >= right or ny < top or ny >= bottom:
                continue
            if outside_rejection(nx, ny):
                continue

            gnx = int((nx - left) / cell_size)
            gny = int((ny - top) / cell_size)

            # Check neighbours in a 5x5 grid window
            too_close = False
            for gx in range(max(0, gnx - 2), min(grid_w, gnx + 3)):
                for gy in range(max(0, gny - 2), min(grid_h, gny + 3)):
                    other = grid.get((gx, gy))
                    if other is None:
                        continue
                    ox, oy = points[other]
                    if (nx - ox) ** 2 + (ny - oy) ** 2 < min_dist_sq:
                        too_close = True
                        break
                if too_close:
                    break

            if not too_close:
                new_idx = len(points)
                points.append((nx, ny))
                active.append(new_idx)
                grid[(gnx, gny)] = new_idx
                found = True
                break

        if not found:
            active.pop(idx)

    return points


def sample_rectangle(rng, top_left, lower_right, min_distance,
                     max_attempts=DEFAULT_POINTS_PER_ITERATION):
    """Poisson disk sample the rectangle spanned by two corners."""
    return poisson_disk_sampling(rng, top_left, lower_right, min_distance,
                                 max_attempts=max_attempts)


def sample_circle(rng, center, radius, min_distance,
                  max_attempts=DEFAULT_POINTS_PER_ITERATION):
    """Poisson disk sample a circle of *radius* around *center*."""
    cx, cy = center
    return poisson_disk_sampling(
        rng, (cx - radius, cy - radius), (cx + radius, cy + radius),
        min_distance, max_attempts=max_attempts, rejection_distance=radius,
    )


# ===================================================================
# Grid sampling, jitter and the pairwise post-filter
# ===================================================================

def grid_sampling(origin, extents, spacing_x, spacing_y):
    """
    Regular lattice covering ``origin .. origin + extents``.

    The first row/column is offset by the fractional remainder of
    ``extents / spacing`` so the lattice lines up across neighbouring
    tiles.

    Returns:
        List of (x, y) tuples in the same space as *origin*.
    """
    if spacing_x <= 0 or spacing_y <= 0:
        return []

    ox, oy = origin
    ext_x, ext_y = extents

    tx = 1.0 - ((ext_x / spacing_x) % 1.0)
    ty = 1.0 - ((ext_y / spacing_y) % 1.0)

    start_x = ox + tx * spacing_x
    start_y = oy + ty * spacing_y
    end_x = ox + ext_x
    end_y = oy + ext_y

    points = []
    x = start_x
    while x < end_x:
        y = start_y
        while y < end_y:
            points.append((x, y))
            y += spacing_y
        x += spacing_x
    return points


def apply_jitter(points, rng, amount):
    """
    Offset every point in a random direction by up to *amount*.

    Returns a new list; *points* is left untouched.
    """
    jittered = []
    for px, py in points:
        angle = rng.random() * math.pi * 2.0
        distance = rng.random() * amount
        jittered.append((px + math.sin(angle) * distance,
                         py + math.cos(angle) * distance))
    return jittered


def remove_close_points(points, min_distance):
    """
    Drop every point that has another point closer than *min_distance*.

    Both members of a close pair are removed.  O(n^2), evaluated against
    the unfiltered input.
    """
    if len(points) < 2:
        return list(points)

    arr = np.asarray(points, dtype=np.float64)
    min_dist_sq = min_distance * min_distance
    keep = []
    for i in range(len(arr)):
        d2 = np.sum((arr - arr[i]) ** 2, axis=1)
        d2[i] = np.inf
        if not np.any(d2 < min_dist_sq):
            keep.append(points[i])
    return keep


# ===================================================================
# Bayer Dithering
# ===================================================================

class _BayerDithering:
    """Ordered dither table pre-normalised to a zero-mean offset range."""

    SIZE = 0
    NORMALIZED = ()

    @classmethod
    def normalized(cls, x, y):
        """Dither offset for the cell containing (*x*, *y*)."""
        return cls.NORMALIZED[int(x) % cls.SIZE][int(y) % cls.SIZE]

    @classmethod
    def threshold(cls, x, y, density):
        """
        Return 1 if a sample at (*x*, *y*) survives at *density*, else 0.

        The fixed per-cell bias is added to *density* and the sum is
        thresholded at 0.5.
        """
        value = density + _DITHER_SCALE * cls.normalized(x, y)
        return 1 if value > 0.5 else 0


class BayerDithering4x4(_BayerDithering):
    SIZE = 4
    MATRIX = (
        (0, 8, 2, 10),
        (12, 4, 14, 6),
        (3, 11, 1, 9),
        (15, 7, 13, 5),
    )
    NORMALIZED = (
        (-0.5, 0.25, -0.3125, 0.4375),
        (0.0, -0.25, 0.1875, -0.0625),
        (-0.375, 0.375, -0.4375, 0.3125),
        (0.125, -0.125, 0.0625, -0.1875),
    )

    @classmethod
    def threshold_color(cls, x, y, color):
        """Threshold using the red channel of an RGBA colour as density."""
        return cls.threshold(x, y, color[0])


class BayerDithering8x8(_BayerDithering):
    SIZE = 8
    MATRIX = (
        (0, 32, 8, 40, 2, 34, 10, 42),
        (48, 16, 56, 24, 50, 18, 58, 26),
        (12, 44, 4, 36, 14, 46, 6, 38),
        (60, 28, 52, 20, 62, 30, 54, 22),
        (3, 35, 11, 43, 1, 33, 9, 41),
        (51, 19, 59, 27, 49, 17, 57, 25),
        (15, 47, 7, 39, 13, 45, 5, 37),
        (63, 31, 55, 23, 61, 29, 53, 21),
    )
    NORMALIZED = (
        (-0.5, 0.25, -0.3125, 0.4375, -0.453125, 0.296875, -0.265625, 0.484375),
        (0.0, -0.25, 0.1875, -0.0625, 0.046875, -0.203125, 0.234375, -0.015625),
        (-0.375, 0.375, -0.4375, 0.3125, -0.328125, 0.421875, -0.390625, 0.359375),
        (0.125, -0.125, 0.0625, -0.1875, 0.171875, -0.078125, 0.109375, -0.140625),
        (-0.46875, 0.28125, -0.28125, 0.46875, -0.484375, 0.265625, -0.296875, 0.453125),
        (0.03125, -0.21875, 0.21875, -0.03125, 0.015625, -0.234375, 0.203125, -0.046875),
        (-0.34375, 0.40625, -0.40625, 0.34375, -0.359375, 0.390625, -0.421875, 0.328125),
        (0.15625, -0.09375, 0.09375, -0.15625, 0.140625, -0.109375, 0.078125, -0.171875),
    )


# ===================================================================
# Noise
# ===================================================================

_SKEW = 0.5 * (math.sqrt(3.0) - 1.0)
_UNSKEW = (3.0 - math.sqrt(3.0)) / 6.0

_CORNER_GRADIENTS = (
    (1, 1), (-1, 1), (1, -1), (-1, -1),
    (1, 0), (-1, 0), (0, 1), (0, -1),
)


class SimplexNoise:
    """
    Seeded 2D simplex noise in roughly [-1, 1].

    Two noise objects built from the same tile seed return identical
    values, which keeps noise-driven rules reproducible per tile.
    """

    def __init__(self, seed=0):
        table = list(range(256))
        random.Random(seed).shuffle(table)
        self._perm = table * 2

    def _corner(self, hx, hy, dx, dy):
        falloff = 0.5 - dx * dx - dy * dy
        if falloff <= 0.0:
            return 0.0
        gx, gy = _CORNER_GRADIENTS[self._perm[hx + self._perm[hy]] & 7]
        falloff *= falloff
        return falloff * falloff * (gx * dx + gy * dy)

    def noise2d(self, x, y):
        skew = (x + y) * _SKEW
        cx = int(math.floor(x + skew))
        cy = int(math.floor(y + skew))
        unskew = (cx + cy) * _UNSKEW
        dx = x - cx + unskew
        dy = y - cy + unskew

        # Lower or upper triangle of the skewed cell
        ox, oy = (1, 0) if dx > dy else (0, 1)

        hx = cx & 255
        hy = cy & 255
        total = (self._corner(hx, hy, dx, dy) +
                 self._corner(hx + ox, hy + oy,
                              dx - ox + _UNSKEW, dy - oy + _UNSKEW) +
                 self._corner(hx + 1, hy + 1,
                              dx - 1.0 + 2.0 * _UNSKEW, dy - 1.0 + 2.0 * _UNSKEW))
        return 70.0 * total


class NoiseField:
    """
    Coherent noise field normalised to [0, 1].

    ``sample(x, y)`` evaluates simplex noise at ``(x, y) * frequency``,
    remaps it from [-1, 1] to [0, 1] and raises it to *power*.
    """

    def __init__(self, seed=0, frequency=1.0, power=1.0):
        self.seed = seed
        self.frequency = frequency
        self.power = power
        self._noise = SimplexNoise(seed)

    def sample(self, x, y):
        raw = self._noise.noise2d(x * self.frequency, y * self.frequency)
        value = min(1.0, max(0.0, (raw + 1.0) * 0.5))
        return value ** self.power

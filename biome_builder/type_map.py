"""
Biome type map and ecotope slot assignment.

The type map is a ``resolution x resolution`` grid of bytes covering the
whole terrain.  A cell value of 0 means "unassigned"; values 1..255 select
the ecotope registered in the matching slot.

Persisted encoding::

    base64(deflate(raw_bytes))      len(raw_bytes) == resolution ** 2

Row-major, one byte per cell, y (row) first: ``raw[y * resolution + x]``.
"""

import base64
import binascii
import logging
import math
import zlib

log = logging.getLogger(__name__)

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for biome_builder.type_map. "
        "Install it with: pip install numpy"
    )


# Slot 0 is reserved for "unassigned", so at most 255 ecotopes can be active
MAX_BIOMES = 256


class CorruptTypeMapError(ValueError):
    """Persisted type-map data could not be decoded to resolution**2 bytes."""


# ---------------------------------------------------------------------------
# Compression helpers
# ---------------------------------------------------------------------------

def compress_bytes(raw):
    """Raw DEFLATE (no zlib header) of *raw*."""
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(bytes(raw)) + compressor.flush()


def decompress_bytes(blob):
    """Inverse of :func:`compress_bytes`."""
    try:
        return zlib.decompress(bytes(blob), -zlib.MAX_WBITS)
    except zlib.error as e:
        raise CorruptTypeMapError("Type map data is not valid DEFLATE: {}".format(e))


# ---------------------------------------------------------------------------
# Type map
# ---------------------------------------------------------------------------

class BiomeTypeMap:
    """
    Byte grid mapping terrain cells to ecotope slot values.

    Not safe for concurrent writers; generation only reads it.  Writers
    (paint operations) must cancel any in-flight generation first.
    """

    def __init__(self, resolution, data=None):
        if resolution <= 0:
            raise ValueError("resolution must be positive, got {}".format(resolution))
        self.resolution = int(resolution)
        if data is None:
            self.data = np.zeros(self.resolution * self.resolution, dtype=np.uint8)
        else:
            arr = np.asarray(data, dtype=np.uint8).reshape(-1)
            if arr.size != self.resolution * self.resolution:
                raise ValueError(
                    "Type map data has {} cells, expected {}".format(
                        arr.size, self.resolution * self.resolution)
                )
            self.data = arr.copy()

    @property
    def grid(self):
        """2D (rows, cols) view of the backing array."""
        return self.data.reshape(self.resolution, self.resolution)

    def clear(self):
        self.data[:] = 0

    def cell_value(self, x, y):
        return int(self.data[y * self.resolution + x])

    # ------------------------------------------------------------------
    # Tile queries
    # ------------------------------------------------------------------

    def _tile_cells(self, tile_extents, terrain_size, tx, ty):
        res = self.resolution
        w = int(math.floor(tile_extents[0] / terrain_size * res))
        h = int(math.floor(tile_extents[1] / terrain_size * res))
        return w * tx, h * ty, w, h

    def any_present(self, tile_extents, terrain_size, tx, ty):
        """True if any cell under tile (*tx*, *ty*) holds a non-zero value."""
        left, top, w, h = self._tile_cells(tile_extents, terrain_size, tx, ty)
        if w <= 0 or h <= 0:
            return False

        grid = self.grid
        for y in range(top, top + h):
            # Row-at-a-time so the scan stops at the first painted row
            if grid[y, left:left + w].any():
                return True
        return False

    def query(self, tile_extents, terrain_size, tx, ty, slots):
        """
        Yield ``(value, ecotope)`` for each distinct slot value in the tile.

        Only the cells covered by the tile are scanned.  The first
        occurrence of each value wins; values without a valid slot
        assignment are skipped.
        """
        lookup = [None] * MAX_BIOMES
        reported = [True] * MAX_BIOMES
        for slot in slots:
            if slot.is_valid():
                lookup[slot.value] = slot.ecotope
                reported[slot.value] = False

        left, top, w, h = self._tile_cells(tile_extents, terrain_size, tx, ty)
        if w <= 0 or h <= 0:
            return

        sub = self.grid[top:top + h, left:left + w]
        for row in sub:
            for value in row:
                value = int(value)
                if value > 0 and not reported[value]:
                    reported[value] = True
                    yield value, lookup[value]

    def sample_world(self, x, y, terrain_size):
        """
        Slot value under the terrain-space position (*x*, *y*).

        Returns None when the mapped cell fails the bound check.  The upper
        bound rejects only ``cell > resolution``, so ``cell == resolution``
        passes and reads the flat index ``y * resolution + x``, which lands
        on the first cell of the next row.  A flat index past the end of
        the array is reported as outside.
        """
        res = self.resolution
        cx = int(math.floor(x / terrain_size * res))
        cy = int(math.floor(y / terrain_size * res))
        if cx < 0 or cx > res or cy < 0 or cy > res:
            return None

        flat = cy * res + cx
        if flat >= self.data.size:
            return None
        return int(self.data[flat])

    # ------------------------------------------------------------------
    # Region access
    # ------------------------------------------------------------------

    def _clamp_rect(self, rect):
        last = self.resolution - 1
        left, top, right, bottom = rect
        left = min(max(int(left), 0), last)
        right = min(max(int(right), 0), last)
        top = min(max(int(top), 0), last)
        bottom = min(max(int(bottom), 0), last)
        return left, top, right, bottom

    def read_region(self, rect):
        """
        Copy of the cells in *rect* = (left, top, right, bottom), inclusive.

        The rectangle is clamped to ``[0, resolution - 1]`` on every side.
        """
        left, top, right, bottom = self._clamp_rect(rect)
        return self.grid[top:bottom + 1, left:right + 1].copy()

    def write_region(self, rect, values):
        """
        Write *values* (a scalar or a 2D array) into the clamped *rect*.

        Array input is anchored at the unclamped top-left corner, so cells
        clipped off the map edge are dropped from the array as well.
        """
        left, top, right, bottom = self._clamp_rect(rect)
        h = bottom - top + 1
        w = right - left + 1
        if np.isscalar(values):
            if not 0 <= int(values) < MAX_BIOMES:
                raise ValueError("Slot value out of range: {}".format(values))
            self.grid[top:bottom + 1, left:right + 1] = int(values)
        else:
            arr = np.asarray(values, dtype=np.uint8)
            dx = max(left - int(rect[0]), 0)
            dy = max(top - int(rect[1]), 0)
            arr = arr[dy:dy + h, dx:dx + w]
            self.grid[top:top + arr.shape[0], left:left + arr.shape[1]] = arr
        return left, top, right, bottom

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self):
        """Text-safe encoding: base64 of the raw-DEFLATE compressed bytes."""
        return base64.b64encode(compress_bytes(self.data.tobytes())).decode('ascii')

    @classmethod
    def deserialize(cls, text, resolution):
        """
        Decode a persisted type map.

        Raises:
            CorruptTypeMapError: if decoding fails or the decoded length is
                not ``resolution ** 2``.
        """
        try:
            blob = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CorruptTypeMapError("Type map data is not valid base64: {}".format(e))

        raw = decompress_bytes(blob)
        expected = resolution * resolution
        if len(raw) != expected:
            raise CorruptTypeMapError(
                "Type map decoded to {} bytes, expected {} ({}x{})".format(
                    len(raw), expected, resolution, resolution)
            )
        return cls(resolution, np.frombuffer(raw, dtype=np.uint8))

    # ------------------------------------------------------------------
    # Image import / export
    # ------------------------------------------------------------------

    def to_image(self, filepath):
        """Write the raw slot values as an 8-bit greyscale PNG."""
        from PIL import Image

        img = Image.fromarray(self.grid)
        img.save(filepath)
        log.info("Wrote type map image %s (%dx%d)", filepath,
                 self.resolution, self.resolution)
        return filepath

    @classmethod
    def from_image(cls, filepath):
        """Load a square 8-bit greyscale image as a type map."""
        from PIL import Image

        with Image.open(filepath) as img:
            if img.width != img.height:
                raise ValueError(
                    "Type map image must be square, got {}x{}".format(img.width, img.height)
                )
            arr = np.array(img.convert('L'), dtype=np.uint8)
        log.info("Loaded type map image %s (%dx%d)", filepath, arr.shape[1], arr.shape[0])
        return cls(arr.shape[0], arr)


# ---------------------------------------------------------------------------
# Ecotope slots
# ---------------------------------------------------------------------------

class EcotopeSlot:
    """A slot value paired with the ecotope painted at that value."""

    __slots__ = ('value', 'ecotope')

    def __init__(self, value, ecotope=None):
        self.value = value
        self.ecotope = ecotope

    def is_valid(self):
        return 0 < self.value < MAX_BIOMES and self.ecotope is not None

    def __repr__(self):
        name = getattr(self.ecotope, 'name', None)
        return "EcotopeSlot({}, {!r})".format(self.value, name)


class EcotopeSlots:
    """
    Bijection between type-map values and ecotope definitions.

    A value holds at most one ecotope and an ecotope occupies at most one
    value.
    """

    def __init__(self):
        self._slots = []

    def __iter__(self):
        return iter(list(self._slots))

    def __len__(self):
        return len(self._slots)

    def get(self, value):
        for slot in self._slots:
            if slot.value == value:
                return slot
        return None

    def value_of(self, ecotope):
        for slot in self._slots:
            if slot.ecotope is ecotope:
                return slot.value
        return None

    def is_valid(self, value):
        slot = self.get(value)
        return slot is not None and slot.is_valid()

    def _free_value(self):
        used = {slot.value for slot in self._slots}
        for value in range(1, MAX_BIOMES):
            if value not in used:
                return value
        return None

    def add(self, ecotope):
        """
        Assign *ecotope* to the first free value.

        Returns the assigned value, or None if the ecotope is already
        present or every value 1..255 is taken (logged as a warning).
        """
        if ecotope is None or self.value_of(ecotope) is not None:
            return None

        value = self._free_value()
        if value is None:
            log.warning("Couldn't find a free slot to add %s to biomes!",
                        getattr(ecotope, 'name', ecotope))
            return None

        self._slots.append(EcotopeSlot(value, ecotope))
        return value

    def assign(self, value, ecotope):
        """Place *ecotope* at an explicit *value* (used when loading)."""
        if not 0 < value < MAX_BIOMES:
            raise ValueError("Slot value out of range: {}".format(value))
        if self.get(value) is not None:
            raise ValueError("Slot {} is already assigned".format(value))
        if ecotope is not None and self.value_of(ecotope) is not None:
            raise ValueError("Ecotope is already assigned to slot {}".format(
                self.value_of(ecotope)))
        self._slots.append(EcotopeSlot(value, ecotope))

    def remove(self, value=None, ecotope=None):
        """Remove a slot entirely so its value can be reused."""
        before = len(self._slots)
        if ecotope is not None:
            self._slots = [s for s in self._slots if s.ecotope is not ecotope]
        else:
            self._slots = [s for s in self._slots if s.value != value]
        return before - len(self._slots)

    def clear(self, ecotope):
        """Drop *ecotope* but keep its value reserved for a replacement."""
        for slot in self._slots:
            if slot.ecotope is ecotope:
                slot.ecotope = None

    def to_dict(self):
        """``{value: ecotope name or None}`` for logging and previews."""
        return {slot.value: getattr(slot.ecotope, 'name', None)
                for slot in sorted(self._slots, key=lambda s: s.value)}

    def replace(self, value, ecotope):
        """Put *ecotope* in the slot at *value* (no-op if already present)."""
        if ecotope is None or self.value_of(ecotope) is not None:
            return False
        slot = self.get(value)
        if slot is None:
            return False
        slot.ecotope = ecotope
        return True

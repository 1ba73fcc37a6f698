"""
Point cloud of placement candidates for one generation unit.

Points are value objects: reading an element returns a copy and writing
stores a copy, so a rule reads a point, mutates the copy and writes it
back.  Iterating while mutating the same cloud is undefined; rules that
remove while scanning walk backwards by index or collect ids first.
"""

from .colors import WHITE


class AssetPoint:
    """
    A single placement candidate.

    Attributes:
        id:               Unique within one ecotope's cloud for one tile
                          (assigned at merge time, -1 before).
        asset_index:      Index of the originating asset state.
        model_index:      Which of the asset's models to instantiate.
        position:         (x, y, z) world position.
        rotation:         (pitch, yaw, roll) in degrees.
        scale:            Uniform scale.
        layer:            0-based ecotope layer index.
        viability:        Higher viability wins footprint overlaps.
        footprint_radius: Exclusion radius against the same layer.
        collision_radius: Exclusion radius against every layer.
        tint:             RGBA float tuple.
        tags:             frozenset of tag strings.
    """

    __slots__ = (
        'id', 'asset_index', 'model_index', 'position', 'rotation', 'scale',
        'layer', 'viability', 'footprint_radius', 'collision_radius', 'tint',
        'tags',
    )

    def __init__(self, position=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0),
                 scale=1.0, layer=0, viability=1, footprint_radius=0.0,
                 collision_radius=0.0, tint=WHITE, tags=frozenset(),
                 model_index=0, asset_index=0, id=-1):
        self.id = id
        self.asset_index = asset_index
        self.model_index = model_index
        self.position = tuple(position)
        self.rotation = tuple(rotation)
        self.scale = scale
        self.layer = layer
        self.viability = viability
        self.footprint_radius = footprint_radius
        self.collision_radius = collision_radius
        self.tint = tuple(tint)
        self.tags = frozenset(tags)

    def copy(self):
        clone = AssetPoint.__new__(AssetPoint)
        for name in self.__slots__:
            setattr(clone, name, getattr(self, name))
        return clone

    def distance_to(self, other):
        ax, ay, az = self.position
        bx, by, bz = other.position
        return ((ax - bx) ** 2 + (ay - by) ** 2 + (az - bz) ** 2) ** 0.5

    def distance_sq_to(self, other):
        ax, ay, az = self.position
        bx, by, bz = other.position
        return (ax - bx) ** 2 + (ay - by) ** 2 + (az - bz) ** 2

    def __eq__(self, other):
        if not isinstance(other, AssetPoint):
            return NotImplemented
        return all(getattr(self, n) == getattr(other, n) for n in self.__slots__)

    __hash__ = None

    def __repr__(self):
        return "AssetPoint(id={}, layer={}, position={})".format(
            self.id, self.layer, self.position)


class PointCloud:
    """
    Ordered, mutable collection of :class:`AssetPoint` addressed by index.

    The cloud carries the random stream global rules draw from (e.g. for
    tie-breaking).  Id uniqueness is not enforced here.
    """

    def __init__(self, rng):
        self.rng = rng
        self._points = []

    @property
    def points(self):
        """Read-only snapshot of the stored points."""
        return tuple(p.copy() for p in self._points)

    @property
    def count(self):
        return len(self._points)

    def __len__(self):
        return len(self._points)

    def __getitem__(self, index):
        return self._points[index].copy()

    def __setitem__(self, index, point):
        self._points[index] = point.copy()

    def __iter__(self):
        for point in self._points:
            yield point.copy()

    def add(self, point):
        self._points.append(point.copy())

    def clear(self):
        del self._points[:]

    def remove_at(self, index):
        del self._points[index]

    def remove_all(self, predicate):
        """Remove every point matching *predicate*; returns the count removed."""
        before = len(self._points)
        self._points = [p for p in self._points if not predicate(p)]
        return before - len(self._points)

"""
Scene surface the generated objects are instantiated into.

:class:`Scene` is the interface a hosting application implements.
:class:`InMemoryScene` is a headless implementation used for batch runs
and tests; it records the thread that created it and refuses mutation
from any other thread, so scene writes stay on the owning context.

:class:`GeneratedObjectStore` keeps one parent group per tile coordinate
and is the only thing the generation pipeline uses to create or destroy
objects.
"""

import itertools
import logging
import threading

log = logging.getLogger(__name__)


GENERATED_PREFIX = "[Generated]"


class Scene:
    """Minimal scene graph interface."""

    def create_group(self, name, parent=None):
        raise NotImplementedError

    def create_object(self, parent, name):
        raise NotImplementedError

    def destroy(self, obj):
        raise NotImplementedError

    def is_valid(self, obj):
        raise NotImplementedError


class SceneObject:
    """A node in an :class:`InMemoryScene`."""

    _ids = itertools.count(1)

    def __init__(self, name, parent=None):
        self.id = next(SceneObject._ids)
        self.name = name
        self.parent = parent
        self.children = []
        self.position = (0.0, 0.0, 0.0)
        self.rotation = (0.0, 0.0, 0.0)
        self.scale = 1.0
        self.tint = (1.0, 1.0, 1.0, 1.0)
        self.tags = frozenset()
        self.model = None
        self.is_static = False
        self.destroyed = False

    def __repr__(self):
        return "SceneObject({}, {!r})".format(self.id, self.name)


class InMemoryScene(Scene):
    """
    Headless scene graph.

    Args:
        enforce_owner_thread: When true (the default) every mutation must
            happen on the thread that created the scene; anything else
            raises RuntimeError.
    """

    def __init__(self, enforce_owner_thread=True):
        self.root = SceneObject("Scene")
        self.enforce_owner_thread = enforce_owner_thread
        self._owner = threading.get_ident()
        self.created_count = 0
        self.destroyed_count = 0

    def _check_owner(self):
        if self.enforce_owner_thread and threading.get_ident() != self._owner:
            raise RuntimeError("Scene mutated outside its owning thread")

    def create_group(self, name, parent=None):
        return self.create_object(parent or self.root, name)

    def create_object(self, parent, name):
        self._check_owner()
        parent = parent or self.root
        obj = SceneObject(name, parent)
        parent.children.append(obj)
        self.created_count += 1
        return obj

    def destroy(self, obj):
        self._check_owner()
        for child in list(obj.children):
            self.destroy(child)
        if obj.parent is not None and obj in obj.parent.children:
            obj.parent.children.remove(obj)
        obj.destroyed = True
        self.destroyed_count += 1

    def is_valid(self, obj):
        return obj is not None and not obj.destroyed

    def iter_objects(self, parent=None):
        """Depth-first walk of every object below *parent* (default root)."""
        stack = list(reversed((parent or self.root).children))
        while stack:
            obj = stack.pop()
            yield obj
            stack.extend(reversed(obj.children))


class GeneratedObjectStore:
    """
    Per-tile parent groups for generated objects.

    ``get_tile_parent`` is idempotent: the same coordinate always returns
    the same group, created on first use.
    """

    def __init__(self, scene, name="{} Biomes".format(GENERATED_PREFIX)):
        self.scene = scene
        self.name = name
        self._root = None
        self._tiles = {}

    @property
    def root(self):
        if self._root is None or not self.scene.is_valid(self._root):
            self._root = self.scene.create_group(self.name)
        return self._root

    def tile_coords(self):
        return list(self._tiles)

    def get_tile_parent(self, tile):
        tile = (int(tile[0]), int(tile[1]))
        parent = self._tiles.get(tile)
        if parent is not None and self.scene.is_valid(parent):
            return parent

        parent = self.scene.create_group(
            "{} Tile Storage {}, {}".format(GENERATED_PREFIX, tile[0], tile[1]), self.root)
        self._tiles[tile] = parent
        return parent

    def tile_objects(self, tile):
        parent = self._tiles.get((int(tile[0]), int(tile[1])))
        if parent is None or not self.scene.is_valid(parent):
            return []
        return list(parent.children)

    def instantiate(self, descriptor, parent=None):
        """Create the scene object described by a placement descriptor."""
        if parent is None:
            parent = self.get_tile_parent(descriptor.tile)
        obj = self.scene.create_object(
            parent, "{} {}".format(GENERATED_PREFIX, descriptor.asset_name))
        obj.position = descriptor.position
        obj.rotation = descriptor.rotation
        obj.scale = descriptor.scale
        obj.tint = descriptor.tint
        obj.tags = descriptor.tags
        obj.model = descriptor.model
        obj.is_static = True
        return obj

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def iter_delete_tile(self, tile, cancel_event=None):
        """
        Destroy a tile's objects one per step, newest first.

        A generator; each ``next()`` destroys one object.  Stops early
        once *cancel_event* is set.
        """
        parent = self._tiles.get((int(tile[0]), int(tile[1])))
        if parent is None or not self.scene.is_valid(parent):
            return
        for child in reversed(list(parent.children)):
            self.scene.destroy(child)
            yield child
            if cancel_event is not None and cancel_event.is_set():
                return

    def delete_tile(self, tile):
        count = sum(1 for _ in self.iter_delete_tile(tile))
        log.debug("Deleted %d objects from tile %s", count, tile)
        return count

    def iter_delete_all(self, cancel_event=None):
        for tile in list(self._tiles):
            for child in self.iter_delete_tile(tile, cancel_event):
                yield child
            if cancel_event is not None and cancel_event.is_set():
                return

    def delete_all(self):
        count = sum(1 for _ in self.iter_delete_all())
        log.info("Deleted %d generated objects", count)
        return count

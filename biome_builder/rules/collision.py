"""
Collision rules.

The layer rules sphere-trace against the scene's collision geometry.
The global rules resolve overlaps between the generated points of one
ecotope.
"""

import logging

from ..terrain import UP, add_scaled
from .base import GlobalRule, LayerRule, register_global_rule, register_layer_rule

log = logging.getLogger(__name__)


class _SphereTraceRule(LayerRule):
    PARAMS = (
        ('with_any_tags', frozenset()),
        ('with_all_tags', frozenset()),
        ('without_tags', frozenset(['generated'])),
    )

    def _trace_end(self, state, point, origin):
        raise NotImplementedError

    def execute(self, state):
        points = state.points
        terrain = state.terrain
        for i in range(len(points) - 1, -1, -1):
            point = points[i]
            origin = add_scaled(point.position, UP, point.collision_radius + 1.0)
            end = self._trace_end(state, point, origin)
            hit = terrain.trace_sphere(point.collision_radius, origin, end,
                                       with_any_tags=self.with_any_tags,
                                       with_all_tags=self.with_all_tags,
                                       without_tags=self.without_tags)
            if hit is not None:
                points.remove_at(i)


@register_layer_rule
class RemoveUnderCeilings(_SphereTraceRule):
    """Remove points with something solid above them."""

    TYPE = "remove_under_ceilings"

    def _trace_end(self, state, point, origin):
        return add_scaled(point.position, UP, state.terrain.terrain_height)


@register_layer_rule
class RemoveTouchingCollision(_SphereTraceRule):
    """Remove points whose collision sphere touches something solid."""

    TYPE = "remove_touching_collision"

    def _trace_end(self, state, point, origin):
        return origin


# ---------------------------------------------------------------------------
# Global rules
# ---------------------------------------------------------------------------

@register_global_rule
class RemoveOverlappingFootprints(GlobalRule):
    """
    Resolve footprint overlaps between points on the same layer.

    For each same-layer pair closer than the larger footprint radius the
    lower viability point is removed.  Equal viability is decided by a
    coin flip from the cloud's random stream.  Removed points take no part
    in later comparisons.
    """

    TYPE = "remove_overlapping_footprints"

    def execute(self, cloud):
        points = cloud.points
        removed = set()

        for ai, a in enumerate(points):
            if a.id in removed:
                continue

            for b in points[ai + 1:]:
                if b.id in removed or a.layer != b.layer:
                    continue

                if a.distance_to(b) >= max(a.footprint_radius, b.footprint_radius):
                    continue

                if a.viability == b.viability:
                    if cloud.rng.random() > 0.5:
                        removed.add(b.id)
                    else:
                        removed.add(a.id)
                        break
                elif a.viability > b.viability:
                    removed.add(b.id)
                else:
                    removed.add(a.id)
                    break

        count = cloud.remove_all(lambda p: p.id in removed)
        log.debug("Removed %d overlapping footprints", count)


@register_global_rule
class RemoveCollidingObjects(GlobalRule):
    """
    Resolve collision-radius overlaps between points on any layer.

    The point with the strictly smaller collision radius is removed.  On
    an exact tie both points are kept.
    """

    TYPE = "remove_colliding_objects"

    def execute(self, cloud):
        points = cloud.points
        removed = set()

        for ai, a in enumerate(points):
            if a.id in removed:
                continue

            for b in points[ai + 1:]:
                if b.id in removed:
                    continue
                if a.distance_to(b) >= a.collision_radius + b.collision_radius:
                    continue

                if a.collision_radius > b.collision_radius:
                    removed.add(b.id)
                elif a.collision_radius < b.collision_radius:
                    removed.add(a.id)
                    break

        count = cloud.remove_all(lambda p: p.id in removed)
        log.debug("Removed %d colliding objects", count)

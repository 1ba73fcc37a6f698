"""
Terrain rules: filter and align points against the terrain surface.

Each point is traced straight down from ``terrain_height`` above its
position.
"""

from ..sampling import random_range
from ..terrain import UP, add_scaled, angle_from_up, lerp_rotation, rotation_from_normal
from .base import LayerRule, register_layer_rule


def _downward_trace(state, point):
    start = add_scaled(point.position, UP, state.terrain.terrain_height)
    return state.terrain.trace_ray(start, point.position)


@register_layer_rule
class RemoveSteepTerrain(LayerRule):
    """Remove points whose terrain slope is outside [min, max] degrees."""

    TYPE = "remove_steep_terrain"
    PARAMS = (
        ('min_valid_angle', 0.0),
        ('max_valid_angle', 40.0),
    )

    def execute(self, state):
        points = state.points
        for i in range(len(points) - 1, -1, -1):
            point = points[i]
            for hit in _downward_trace(state, point):
                if not hit.is_terrain:
                    continue
                angle = angle_from_up(hit.normal)
                if angle < self.min_valid_angle or angle > self.max_valid_angle:
                    points.remove_at(i)
                    break


class _AlignRule(LayerRule):
    PARAMS = (
        ('min_angle_influence', 1.0),
        ('max_angle_influence', 1.0),
    )

    def _pick_hit(self, hits):
        raise NotImplementedError

    def execute(self, state):
        points = state.points
        for i in range(len(points) - 1, -1, -1):
            point = points[i]
            hit = self._pick_hit(_downward_trace(state, point))
            if hit is None:
                continue

            influence = random_range(state.rng, self.min_angle_influence,
                                     self.max_angle_influence)
            target = rotation_from_normal(hit.normal, yaw=point.rotation[1])
            point.position = hit.position
            point.rotation = lerp_rotation(point.rotation, target, influence)
            points[i] = point


@register_layer_rule
class AlignToTerrain(_AlignRule):
    """Snap points onto the terrain and tilt them towards its normal."""

    TYPE = "align_to_terrain"

    def _pick_hit(self, hits):
        for hit in hits:
            if hit.is_terrain:
                return hit
        return None


@register_layer_rule
class AlignToCollision(_AlignRule):
    """Snap points onto whatever collision is hit first."""

    TYPE = "align_to_collision"

    def _pick_hit(self, hits):
        return hits[0] if hits else None


@register_layer_rule
class RemoveBelowHeight(LayerRule):
    TYPE = "remove_below_height"
    PARAMS = (('height', 0.0),)

    def execute(self, state):
        state.points.remove_all(lambda p: p.position[2] < self.height)


@register_layer_rule
class RemoveAboveHeight(LayerRule):
    TYPE = "remove_above_height"
    PARAMS = (('height', 0.0),)

    def execute(self, state):
        state.points.remove_all(lambda p: p.position[2] > self.height)

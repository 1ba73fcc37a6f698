"""
Transformation rules: yaw, scale and tint.

Scaling rules and the noise/round yaw rules multiply the cached footprint
and collision radii by the point scale so the global rules see the scaled
object.  The noise rules sample the field at
``position / footprint_radius``.
"""

from ..colors import WHITE, Gradient
from ..sampling import NoiseField, lerp, random_range
from .base import LayerRule, register_layer_rule


class _NoiseRule(LayerRule):
    """Shared noise setup; subclasses extend PARAMS."""

    NOISE_PARAMS = (
        ('noise_frequency', 1.0),
        ('noise_power', 1.0),
    )

    def _noise_values(self, state):
        """Yield ``(index, point, value)`` for every point in the state."""
        disc = state.asset_reference.asset.footprint_radius or 1.0
        noise = NoiseField(state.seed, self.noise_frequency, self.noise_power)
        points = state.points
        for i in range(len(points)):
            point = points[i]
            value = noise.sample(point.position[0] / disc, point.position[1] / disc)
            yield i, point, value


@register_layer_rule
class RandomYaw(LayerRule):
    TYPE = "random_yaw"

    def execute(self, state):
        points = state.points
        for i in range(len(points)):
            p = points[i]
            pitch, yaw, roll = p.rotation
            yaw = (yaw + random_range(state.rng, 0.0, 360.0)) % 360.0
            p.rotation = (pitch, yaw, roll)
            points[i] = p


@register_layer_rule
class RandomScale(LayerRule):
    TYPE = "random_scale"
    PARAMS = (('scale_range', (0.9, 1.1)),)

    def execute(self, state):
        points = state.points
        low, high = self.scale_range
        for i in range(len(points)):
            p = points[i]
            p.scale = random_range(state.rng, low, high)
            p.footprint_radius *= p.scale
            p.collision_radius *= p.scale
            points[i] = p


@register_layer_rule
class RandomTint(LayerRule):
    TYPE = "random_tint"
    PARAMS = (('tint', Gradient.solid(WHITE)),)

    def execute(self, state):
        points = state.points
        for i in range(len(points)):
            p = points[i]
            p.tint = self.tint.evaluate(state.rng.random())
            points[i] = p


@register_layer_rule
class NoiseScale(_NoiseRule):
    TYPE = "noise_scale"
    PARAMS = (('scale_range', (0.9, 1.1)),) + _NoiseRule.NOISE_PARAMS

    def execute(self, state):
        low, high = self.scale_range
        for i, p, value in self._noise_values(state):
            p.scale = lerp(low, high, value)
            p.footprint_radius *= p.scale
            p.collision_radius *= p.scale
            state.points[i] = p


@register_layer_rule
class NoiseTint(_NoiseRule):
    TYPE = "noise_tint"
    PARAMS = (('tint', Gradient.solid(WHITE)),) + _NoiseRule.NOISE_PARAMS

    def execute(self, state):
        for i, p, value in self._noise_values(state):
            p.tint = self.tint.evaluate(value)
            state.points[i] = p


@register_layer_rule
class NoiseYaw(_NoiseRule):
    """Yaw from the noise field; pitch and roll are reset."""

    TYPE = "noise_yaw"
    PARAMS = _NoiseRule.NOISE_PARAMS

    def execute(self, state):
        for i, p, value in self._noise_values(state):
            p.rotation = (0.0, value * 360.0, 0.0)
            p.footprint_radius *= p.scale
            p.collision_radius *= p.scale
            state.points[i] = p


@register_layer_rule
class RoundYaw(LayerRule):
    """Snap yaw to the nearest multiple of ``round_to_nearest`` degrees.

    Pitch and roll are reset.
    """

    TYPE = "round_yaw"
    PARAMS = (('round_to_nearest', 90.0),)

    def execute(self, state):
        step = self.round_to_nearest
        if step <= 0:
            return
        points = state.points
        for i in range(len(points)):
            p = points[i]
            p.rotation = (0.0, round(p.rotation[1] / step) * step, 0.0)
            p.footprint_radius *= p.scale
            p.collision_radius *= p.scale
            points[i] = p

"""
Distribution rules: create candidate points and thin them out.

The sampling rules work in tile-local space and hand their points to the
generator state, which keeps only the candidates that land on the
ecotope's painted cells.
"""

import logging

from ..sampling import (SQRT2, BayerDithering8x8, NoiseField, apply_jitter,
                        grid_sampling, lerp, remove_close_points,
                        sample_rectangle)
from .base import GlobalRule, LayerRule, register_global_rule, register_layer_rule

log = logging.getLogger(__name__)


def _dithered_poisson(state, density, noise=None):
    """Poisson sample the tile, dither it down to *density*, maybe jitter."""
    asset = state.asset_reference.asset
    disc = asset.footprint_radius
    if disc <= 0:
        log.debug("Asset '%s' has no footprint radius, nothing to distribute", asset.name)
        return []

    points = sample_rectangle(state.rng, (0.0, 0.0), state.extents, disc * 1.5)

    kept = []
    for x, y in points:
        px = x / disc
        py = y / disc
        value = density
        if noise is not None:
            value = noise.sample(px, py) * density
        if BayerDithering8x8.threshold(px, py, value):
            kept.append((x, y))

    jitter = lerp(asset.jitter, 0.0, density)
    if jitter > 1.0:
        kept = apply_jitter(kept, state.rng, jitter)
        kept = remove_close_points(kept, disc * SQRT2)
    return kept


@register_layer_rule
class PoissonDistribution(LayerRule):
    """Naturalistic distribution: dithered Poisson disk sampling."""

    TYPE = "poisson_distribution"
    PARAMS = (('density', 1.0),)

    def execute(self, state):
        density = state.density * state.asset_reference.density * self.density
        state.add_from_local_points(_dithered_poisson(state, density))


@register_layer_rule
class NoiseDistribution(LayerRule):
    """Poisson distribution whose density is modulated by a noise field."""

    TYPE = "noise_distribution"
    PARAMS = (
        ('density', 1.0),
        ('noise_frequency', 1.0),
        ('noise_power', 1.0),
    )

    def execute(self, state):
        density = state.density * state.asset_reference.density * self.density
        noise = NoiseField(state.seed, self.noise_frequency, self.noise_power)
        state.add_from_local_points(_dithered_poisson(state, density, noise))


@register_layer_rule
class GridDistribution(LayerRule):
    """
    Regular lattice at ``footprint_radius * spacing_multiplier``.

    With ``allow_jitter`` the lattice is jittered by the asset's jitter and
    points that end up too close are dropped.
    """

    TYPE = "grid_distribution"
    PARAMS = (
        ('spacing_multiplier', (1.0, 1.0)),
        ('allow_jitter', False),
    )

    def execute(self, state):
        asset = state.asset_reference.asset
        disc = asset.footprint_radius
        spacing_x = disc * self.spacing_multiplier[0]
        spacing_y = disc * self.spacing_multiplier[1]
        if spacing_x <= 0 or spacing_y <= 0:
            return

        origin = (state.world_origin[0], state.world_origin[1])
        points = grid_sampling(origin, state.extents, spacing_x, spacing_y)

        if self.allow_jitter and asset.jitter > 1.0:
            points = apply_jitter(points, state.rng, asset.jitter)
            points = remove_close_points(points, disc * SQRT2)

        z = state.world_origin[2]
        state.add_from_world_points([(x, y, z) for x, y in points])


@register_layer_rule
class RemoveRandom(LayerRule):
    """Drop each point with probability ``remove_percentage``."""

    TYPE = "remove_random"
    PARAMS = (('remove_percentage', 0.5),)

    def execute(self, state):
        points = state.points
        for i in range(len(points) - 1, -1, -1):
            if state.rng.random() < self.remove_percentage:
                points.remove_at(i)


# ---------------------------------------------------------------------------
# Cross-layer global rules
# ---------------------------------------------------------------------------

class _LayerProximityRule(GlobalRule):
    """
    Layer numbers are 1-based in configuration.  ``distance`` is compared
    against squared point distances.
    """

    PARAMS = (
        ('remove_assets_from_layer', 1),
        ('target_layer', 1),
        ('distance', 400.0),
    )

    remove_when_near = False

    def execute(self, cloud):
        remove_layer = self.remove_assets_from_layer - 1
        target_layer = self.target_layer - 1
        limit_sq = self.distance * self.distance

        for ai in range(len(cloud) - 1, -1, -1):
            a = cloud[ai]
            if a.layer != remove_layer:
                continue

            near = False
            for b in cloud:
                if b.layer != target_layer:
                    continue
                if a.distance_sq_to(b) < limit_sq:
                    near = True
                    break

            if near == self.remove_when_near:
                cloud.remove_at(ai)


@register_global_rule
class RemoveIfNotNearLayer(_LayerProximityRule):
    """Remove points lacking a point of ``target_layer`` within ``distance``."""

    TYPE = "remove_if_not_near_layer"


@register_global_rule
class RemoveIfNearLayer(_LayerProximityRule):
    """Remove points having a point of ``target_layer`` within ``distance``."""

    TYPE = "remove_if_near_layer"
    remove_when_near = True

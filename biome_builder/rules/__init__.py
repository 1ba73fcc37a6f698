"""
Rule engine: layer rules and global rules, looked up by stable string id.

Importing this package registers every built-in rule in
:data:`LAYER_RULES` / :data:`GLOBAL_RULES`.
"""

from .base import (LAYER_RULES, GLOBAL_RULES, UnknownRuleError, LayerRule,
                   GlobalRule, register_layer_rule, register_global_rule,
                   create_layer_rule, create_global_rule, create_rule)
from .distribution import (PoissonDistribution, NoiseDistribution,
                           GridDistribution, RemoveRandom,
                           RemoveIfNotNearLayer, RemoveIfNearLayer)
from .terrain import (RemoveSteepTerrain, AlignToTerrain, AlignToCollision,
                      RemoveBelowHeight, RemoveAboveHeight)
from .collision import (RemoveUnderCeilings, RemoveTouchingCollision,
                        RemoveOverlappingFootprints, RemoveCollidingObjects)
from .transformation import (RandomYaw, RandomScale, RandomTint, NoiseScale,
                             NoiseTint, NoiseYaw, RoundYaw)
from .organization import ApplyTags

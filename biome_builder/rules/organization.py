"""Organisation rules."""

from .base import GlobalRule, register_global_rule


@register_global_rule
class ApplyTags(GlobalRule):
    """Overwrite every point's tag set with ``tags``."""

    TYPE = "apply_tags"
    PARAMS = (('tags', frozenset()),)

    def execute(self, cloud):
        for i in range(len(cloud)):
            p = cloud[i]
            p.tags = self.tags
            cloud[i] = p

"""
Rule base classes and the rule registries.

Rules are small configuration objects with an ``execute`` method.  Each
concrete rule declares a stable ``TYPE`` id and a ``PARAMS`` tuple of
``(name, default)`` pairs; the id is what ecotope files store and what
the registries are keyed by::

    @register_layer_rule
    class RandomYaw(LayerRule):
        TYPE = "random_yaw"

Layer rules mutate a :class:`~biome_builder.generator.GeneratorState` in
place.  Global rules mutate the merged
:class:`~biome_builder.point_cloud.PointCloud` of one ecotope.
"""

from ..colors import Gradient


LAYER_RULES = {}
GLOBAL_RULES = {}


class UnknownRuleError(KeyError):
    """A rule definition names a type that is not registered."""


def register_layer_rule(cls):
    """Class decorator adding *cls* to :data:`LAYER_RULES`."""
    LAYER_RULES[cls.TYPE] = cls
    return cls


def register_global_rule(cls):
    """Class decorator adding *cls* to :data:`GLOBAL_RULES`."""
    GLOBAL_RULES[cls.TYPE] = cls
    return cls


# ---------------------------------------------------------------------------
# Parameter encoding
# ---------------------------------------------------------------------------

def _decode_param(default, value):
    if isinstance(default, Gradient):
        return value if isinstance(value, Gradient) else Gradient.from_dict(value)
    if isinstance(default, frozenset):
        if isinstance(value, str):
            value = value.split()
        return frozenset(value)
    if isinstance(default, tuple):
        return tuple(float(v) for v in value)
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def _encode_param(value):
    if isinstance(value, Gradient):
        return value.to_dict()
    if isinstance(value, frozenset):
        return sorted(value)
    if isinstance(value, tuple):
        return list(value)
    return value


class _Rule:
    TYPE = None
    PARAMS = ()

    def __init__(self, **params):
        defaults = dict(self.PARAMS)
        unknown = set(params) - set(defaults)
        if unknown:
            raise TypeError("{} got unexpected parameters: {}".format(
                type(self).__name__, ", ".join(sorted(unknown))))
        for name, default in self.PARAMS:
            value = params.get(name, default)
            setattr(self, name, _decode_param(default, value))

    def to_dict(self):
        data = {'type': self.TYPE}
        for name, _ in self.PARAMS:
            data[name] = _encode_param(getattr(self, name))
        return data

    @classmethod
    def from_dict(cls, data):
        params = {k: v for k, v in data.items() if k != 'type'}
        return cls(**params)

    def __eq__(self, other):
        return type(self) is type(other) and self.to_dict() == other.to_dict()

    def __repr__(self):
        args = ", ".join("{}={!r}".format(name, getattr(self, name))
                         for name, _ in self.PARAMS)
        return "{}({})".format(type(self).__name__, args)


class LayerRule(_Rule):
    """Transformation over one asset's generator state."""

    def execute(self, state):
        raise NotImplementedError


class GlobalRule(_Rule):
    """Transformation over the merged point cloud of one ecotope."""

    def execute(self, cloud):
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def _lookup(registry, kind, data):
    if isinstance(data, str):
        data = {'type': data}
    rule_type = data.get('type')
    try:
        cls = registry[rule_type]
    except KeyError:
        raise UnknownRuleError("Unknown {} rule type: {!r}".format(kind, rule_type))
    return cls.from_dict(data)


def create_layer_rule(data):
    """Build a layer rule from ``{"type": ..., **params}`` or a bare id."""
    return _lookup(LAYER_RULES, 'layer', data)


def create_global_rule(data):
    """Build a global rule from ``{"type": ..., **params}`` or a bare id."""
    return _lookup(GLOBAL_RULES, 'global', data)


def create_rule(kind, data):
    """Dispatch to :func:`create_layer_rule` or :func:`create_global_rule`."""
    if kind == 'layer':
        return create_layer_rule(data)
    if kind == 'global':
        return create_global_rule(data)
    raise ValueError("Rule kind must be 'layer' or 'global', got {!r}".format(kind))

"""
Ecotope definitions and their JSON file format.

An ecotope definition is a plain JSON document describing which assets an
ecotope scatters and the ordered rules that shape the placement::

    {
        "format_version": "1.0.0",
        "name": "Temperate Forest",
        "color": "#2f8f2fff",
        "density": 1.0,
        "assets": {
            "oak": {"models": ["models/oak_a.vmdl"], "viability": 3,
                    "footprint_radius": 120, "collision_radius": 40,
                    "jitter": 30}
        },
        "layers": [
            {"name": "Trees",
             "assets": [{"asset": "oak", "density": 1.0}],
             "rules": [{"type": "poisson_distribution", "density": 0.6},
                       {"type": "random_yaw"}]}
        ],
        "global_rules": [{"type": "remove_overlapping_footprints"}]
    }

Layer asset entries name an asset from the file's own ``assets`` table or
from an external asset library, or carry the asset inline.  Rule entries
are resolved through the registries in :mod:`biome_builder.rules`.
"""

import os
import json
import logging

from .colors import parse_color, color_to_hex
from .rules import create_layer_rule, create_global_rule, LAYER_RULES, GLOBAL_RULES

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema version
# ---------------------------------------------------------------------------

FORMAT_VERSION = "1.0.0"

_DEFAULT_COLOR = (1.0, 1.0, 1.0, 1.0)


# ---------------------------------------------------------------------------
# JSON I/O helpers
# ---------------------------------------------------------------------------

def load_json(filepath):
    """Parse an ecotope, asset library or biome settings file."""
    log.debug("Reading %s", filepath)
    with open(filepath, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(filepath, data, indent=2):
    """Write *data* as indented JSON, creating missing parent directories."""
    os.makedirs(os.path.dirname(os.path.abspath(filepath)), exist_ok=True)
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent)
        f.write('\n')
    log.debug("Wrote %s", filepath)


# ---------------------------------------------------------------------------
# Definition classes
# ---------------------------------------------------------------------------

class EcotopeAsset:
    """
    A placeable asset.

    Attributes:
        name:             Identifier used by layer references.
        models:           Model references; one is picked per placement.
        viability:        Higher viability wins footprint overlaps.
        footprint_radius: No other object from the same layer may spawn
                          within this radius.
        collision_radius: No other object at all may spawn within this
                          radius.
        jitter:           How far a point may wander from its sampled
                          position.
    """

    def __init__(self, name, models=(), viability=1, footprint_radius=0.0,
                 collision_radius=0.0, jitter=0.0):
        self.name = name
        self.models = list(models)
        self.viability = int(viability)
        self.footprint_radius = float(footprint_radius)
        self.collision_radius = float(collision_radius)
        self.jitter = float(jitter)

    def to_dict(self):
        return {
            'models': list(self.models),
            'viability': self.viability,
            'footprint_radius': self.footprint_radius,
            'collision_radius': self.collision_radius,
            'jitter': self.jitter,
        }

    @classmethod
    def from_dict(cls, name, data):
        return cls(
            name,
            models=data.get('models', []),
            viability=data.get('viability', 1),
            footprint_radius=data.get('footprint_radius', 0.0),
            collision_radius=data.get('collision_radius', 0.0),
            jitter=data.get('jitter', 0.0),
        )

    def __repr__(self):
        return "EcotopeAsset({!r})".format(self.name)


class AssetReference:
    """An asset used by a layer, with a per-reference density multiplier."""

    __slots__ = ('asset', 'density')

    def __init__(self, asset, density=1.0):
        self.asset = asset
        self.density = float(density)

    def __repr__(self):
        return "AssetReference({!r}, density={})".format(
            getattr(self.asset, 'name', None), self.density)


class EcotopeLayer:
    """A named group of asset references sharing an ordered rule list."""

    def __init__(self, name, assets=(), rules=()):
        self.name = name
        self.assets = list(assets)
        self.rules = list(rules)

    def __repr__(self):
        return "EcotopeLayer({!r}, {} assets, {} rules)".format(
            self.name, len(self.assets), len(self.rules))


class EcotopeDefinition:
    """
    Ordered layers plus ordered global rules.

    Treated as immutable while a generation pass is running.
    """

    def __init__(self, name, layers=(), global_rules=(), density=1.0,
                 color=_DEFAULT_COLOR, source_path=None):
        self.name = name
        self.layers = list(layers)
        self.global_rules = list(global_rules)
        self.density = float(density)
        self.color = parse_color(color)
        self.source_path = source_path

    def iter_assets(self):
        """Yield ``(layer_index, reference)`` in layer order."""
        for layer_index, layer in enumerate(self.layers):
            for reference in layer.assets:
                yield layer_index, reference

    def __repr__(self):
        return "EcotopeDefinition({!r})".format(self.name)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_ecotope(data, asset_library=None):
    """
    Validate an ecotope dict against the file schema.

    Returns a list of error strings.  An empty list means the ecotope is
    valid.
    """
    errors = []

    for field in ("format_version", "name", "layers"):
        if field not in data:
            errors.append("Missing required field: {}".format(field))
    if errors:
        return errors

    major = str(data["format_version"]).split('.')[0]
    if major != FORMAT_VERSION.split('.')[0]:
        errors.append("Unsupported format_version '{}' (expected {}.x)".format(
            data["format_version"], FORMAT_VERSION.split('.')[0]))

    known_assets = set(data.get("assets", {}))
    if asset_library:
        known_assets.update(asset_library)

    if not isinstance(data["layers"], list):
        errors.append("layers must be a list")
        return errors

    for i, layer in enumerate(data["layers"]):
        if not isinstance(layer, dict):
            errors.append("layers[{}] must be a dict".format(i))
            continue
        for j, entry in enumerate(layer.get("assets", [])):
            asset = entry.get("asset") if isinstance(entry, dict) else None
            if asset is None:
                errors.append("layers[{}].assets[{}] missing 'asset'".format(i, j))
            elif isinstance(asset, str) and asset not in known_assets:
                errors.append("layers[{}].assets[{}] references unknown asset '{}'".format(
                    i, j, asset))
        for j, rule in enumerate(layer.get("rules", [])):
            rule_type = rule.get("type") if isinstance(rule, dict) else None
            if rule_type not in LAYER_RULES:
                errors.append("layers[{}].rules[{}] unknown layer rule '{}'".format(
                    i, j, rule_type))

    for j, rule in enumerate(data.get("global_rules", [])):
        rule_type = rule.get("type") if isinstance(rule, dict) else None
        if rule_type not in GLOBAL_RULES:
            errors.append("global_rules[{}] unknown global rule '{}'".format(j, rule_type))

    return errors


# ---------------------------------------------------------------------------
# dict <-> definition
# ---------------------------------------------------------------------------

def ecotope_from_dict(data, asset_library=None, source_path=None):
    """
    Build an :class:`EcotopeDefinition` from its JSON dict.

    Args:
        data:          Parsed ecotope JSON.
        asset_library: Optional dict name -> EcotopeAsset shared between
                       ecotope files.
        source_path:   Remembered so the biome settings can refer back to
                       the file.

    Raises:
        ValueError: if the dict fails :func:`validate_ecotope`.
    """
    errors = validate_ecotope(data, asset_library)
    if errors:
        raise ValueError("Invalid ecotope definition:\n  " + "\n  ".join(errors))

    assets = dict(asset_library or {})
    for name, asset_data in data.get("assets", {}).items():
        assets[name] = EcotopeAsset.from_dict(name, asset_data)

    layers = []
    for i, layer_data in enumerate(data["layers"]):
        references = []
        for entry in layer_data.get("assets", []):
            asset = entry["asset"]
            if isinstance(asset, dict):
                asset = EcotopeAsset.from_dict(asset.get("name", "asset"), asset)
            else:
                asset = assets[asset]
            references.append(AssetReference(asset, entry.get("density", 1.0)))

        rules = [create_layer_rule(r) for r in layer_data.get("rules", [])]
        layers.append(EcotopeLayer(layer_data.get("name", "Layer {}".format(i + 1)),
                                   references, rules))

    global_rules = [create_global_rule(r) for r in data.get("global_rules", [])]

    return EcotopeDefinition(
        data["name"],
        layers=layers,
        global_rules=global_rules,
        density=data.get("density", 1.0),
        color=data.get("color", _DEFAULT_COLOR),
        source_path=source_path,
    )


def ecotope_to_dict(ecotope):
    """Inverse of :func:`ecotope_from_dict`; assets are emitted in a table."""
    assets = {}
    layers = []
    for layer in ecotope.layers:
        entries = []
        for reference in layer.assets:
            assets[reference.asset.name] = reference.asset.to_dict()
            entries.append({"asset": reference.asset.name, "density": reference.density})
        layers.append({
            "name": layer.name,
            "assets": entries,
            "rules": [rule.to_dict() for rule in layer.rules],
        })

    return {
        "format_version": FORMAT_VERSION,
        "name": ecotope.name,
        "color": color_to_hex(ecotope.color),
        "density": ecotope.density,
        "assets": assets,
        "layers": layers,
        "global_rules": [rule.to_dict() for rule in ecotope.global_rules],
    }


def load_ecotope(filepath, asset_library=None):
    """Read an ``*.ecotope.json`` file into an :class:`EcotopeDefinition`."""
    data = load_json(filepath)
    ecotope = ecotope_from_dict(data, asset_library, source_path=os.path.abspath(filepath))
    log.info("Loaded ecotope '%s' (%d layers, %d global rules) from %s",
             ecotope.name, len(ecotope.layers), len(ecotope.global_rules), filepath)
    return ecotope


def save_ecotope(filepath, ecotope):
    """Write *ecotope* to *filepath* and remember the path on it."""
    save_json(filepath, ecotope_to_dict(ecotope))
    ecotope.source_path = os.path.abspath(filepath)
    log.info("Wrote ecotope '%s' to %s", ecotope.name, filepath)
    return filepath


def load_asset_library(filepath):
    """Read a JSON table of ``name -> asset dict`` into EcotopeAsset objects."""
    data = load_json(filepath)
    return {name: EcotopeAsset.from_dict(name, asset) for name, asset in data.items()}

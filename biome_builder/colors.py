"""
Colour helpers for ecotope tints and type-map previews.

Colours are RGBA tuples of floats in [0, 1].  A :class:`Gradient` maps a
parameter in [0, 1] to a colour and is what the tint rules sample.
"""


WHITE = (1.0, 1.0, 1.0, 1.0)


def parse_color(value):
    """
    Normalise a colour description to an RGBA float tuple.

    Accepts ``"#rrggbb"`` / ``"#rrggbbaa"`` hex strings, 3- or 4-tuples of
    floats in [0, 1], or 3- or 4-tuples of ints in [0, 255].
    """
    if isinstance(value, str):
        text = value.lstrip('#')
        if len(text) not in (6, 8):
            raise ValueError("Invalid hex colour: {!r}".format(value))
        channels = [int(text[i:i + 2], 16) / 255.0 for i in range(0, len(text), 2)]
    else:
        channels = list(value)
        if len(channels) not in (3, 4):
            raise ValueError("Colour must have 3 or 4 channels: {!r}".format(value))
        if any(isinstance(c, int) and not isinstance(c, bool) and c > 1 for c in channels):
            channels = [c / 255.0 for c in channels]
        channels = [float(c) for c in channels]

    if len(channels) == 3:
        channels.append(1.0)
    return tuple(channels)


def color_to_hex(color):
    """Format an RGBA float tuple as ``#rrggbbaa``."""
    return '#' + ''.join('{:02x}'.format(int(round(max(0.0, min(1.0, c)) * 255)))
                         for c in color)


def color_to_rgb8(color):
    """RGBA float tuple -> (r, g, b) ints in [0, 255]."""
    return tuple(int(round(max(0.0, min(1.0, c)) * 255)) for c in color[:3])


def interpolate_color(c1, c2, t):
    """
    Linearly interpolate between two RGBA tuples.

    Args:
        c1: Start colour.
        c2: End colour.
        t:  Interpolation factor clamped to [0, 1].
    """
    t = max(0.0, min(1.0, t))
    return tuple(a + (b - a) * t for a, b in zip(c1, c2))


class Gradient:
    """
    Piecewise-linear colour gradient.

    *stops* is a sequence of ``(position, color)`` pairs; positions are in
    [0, 1] and are sorted on construction.
    """

    __slots__ = ('stops',)

    def __init__(self, stops):
        if not stops:
            raise ValueError("Gradient needs at least one stop")
        self.stops = tuple(sorted(((float(t), parse_color(c)) for t, c in stops),
                                  key=lambda s: s[0]))

    @classmethod
    def solid(cls, color):
        return cls([(0.0, color)])

    def evaluate(self, t):
        """Colour at parameter *t* (clamped to the first/last stop)."""
        stops = self.stops
        if t <= stops[0][0]:
            return stops[0][1]
        if t >= stops[-1][0]:
            return stops[-1][1]
        for (t0, c0), (t1, c1) in zip(stops, stops[1:]):
            if t0 <= t <= t1:
                span = t1 - t0
                if span <= 0:
                    return c1
                return interpolate_color(c0, c1, (t - t0) / span)
        return stops[-1][1]

    def to_dict(self):
        return [[t, color_to_hex(c)] for t, c in self.stops]

    @classmethod
    def from_dict(cls, data):
        """Build from a list of ``[t, color]`` pairs or a single colour."""
        if data is None:
            return cls.solid(WHITE)
        if isinstance(data, str) or (data and not isinstance(data[0], (list, tuple))):
            return cls.solid(data)
        return cls([(t, c) for t, c in data])

    def __eq__(self, other):
        return isinstance(other, Gradient) and self.stops == other.stops

    def __repr__(self):
        return "Gradient({!r})".format(self.stops)

"""Small numeric helpers shared by the camera models."""

from __future__ import annotations

import math
import random

__all__ = [
    "clamp",
    "normalize_theta",
    "square",
    "cube",
    "random_uniform",
    "random_normal",
]


def clamp(v, a, b):
    """Limit ``v`` to the closed interval ``[a, b]``."""
    return min(b, max(a, v))


def normalize_theta(theta: float) -> float:
    """Wrap an angle in radians into the interval ``[-pi, pi]``."""
    norm_theta = theta
    while norm_theta < -math.pi:
        norm_theta += 2.0 * math.pi
    while norm_theta > math.pi:
        norm_theta -= 2.0 * math.pi
    return norm_theta


def square(x):
    """Return ``x * x``."""
    return x * x


def cube(x):
    """Return ``x * x * x``."""
    return x * x * x


def random_uniform(a: float, b: float) -> float:
    """Draw a uniformly distributed value between ``a`` and ``b``."""
    return random.random() * (b - a) + a


def random_normal(sigma: float) -> float:
    """Draw a zero-mean normal sample with standard deviation ``sigma``.

    Uses the polar Box-Muller method.
    """
    while True:
        x1 = 2.0 * random_uniform(0.0, 1.0) - 1.0
        x2 = 2.0 * random_uniform(0.0, 1.0) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    w = math.sqrt((-2.0 * math.log(w)) / w)
    return x1 * w * sigma
"""
Unit quaternions as numpy arrays [w, x, y, z].

Used for orientation perturbations in the sphere sampler and as the
parameterisation of per-residue (phi, psi) pairs in the quasi-Newton optimizer.
"""
import math

import numpy as np

GOLDEN_RATIO = (1.0 + math.sqrt(5.0)) / 2.0
GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))  # ~137.508 deg

IDENTITY = np.array([1.0, 0.0, 0.0, 0.0])


def normalize(q):
    q = np.asarray(q, dtype=float)
    n = np.linalg.norm(q)
    if n < 1e-12 or not np.isfinite(n):
        return IDENTITY.copy()
    return q / n


def from_axis_angle(axis, angle):
    axis = np.asarray(axis, dtype=float)
    n = np.linalg.norm(axis)
    if n < 1e-12:
        return IDENTITY.copy()
    axis = axis / n
    half = 0.5 * angle
    return np.concatenate(([math.cos(half)], axis * math.sin(half)))


def to_axis_angle(q):
    q = normalize(q)
    w = max(-1.0, min(1.0, q[0]))
    angle = 2.0 * math.acos(w)
    s = math.sqrt(max(0.0, 1.0 - w * w))
    if s < 1e-9:
        return np.array([1.0, 0.0, 0.0]), 0.0
    return q[1:] / s, angle


def conjugate(q):
    q = np.asarray(q, dtype=float)
    return np.array([q[0], -q[1], -q[2], -q[3]])


def multiply(a, b):
    w1, x1, y1, z1 = a
    w2, x2, y2, z2 = b
    return np.array([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
    ])


def to_rotation_matrix(q):
    w, x, y, z = normalize(q)
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])


def rotate(q, points, origin=None):
    """Rotate a point or an (n, 3) array of points about origin."""
    pts = np.asarray(points, dtype=float)
    R = to_rotation_matrix(q)
    if origin is None:
        return pts @ R.T
    origin = np.asarray(origin, dtype=float)
    return (pts - origin) @ R.T + origin


def angle_between(a, b):
    d = abs(float(np.dot(normalize(a), normalize(b))))
    return 2.0 * math.acos(min(1.0, d))


def slerp(q1, q2, t):
    """Spherical linear interpolation along the shortest arc."""
    q1 = normalize(q1)
    q2 = normalize(q2)
    dot = float(np.dot(q1, q2))
    if dot < 0.0:
        q2 = -q2
        dot = -dot
    if dot > 0.9995:
        # nearly parallel, sin(theta) is numerically zero
        return normalize(q1 + t * (q2 - q1))
    theta0 = math.acos(dot)
    theta = theta0 * t
    sin0 = math.sin(theta0)
    s1 = math.cos(theta) - dot * math.sin(theta) / sin0
    s2 = math.sin(theta) / sin0
    return normalize(s1 * q1 + s2 * q2)


def slerp_path(q1, q2, steps):
    if steps < 1:
        return [normalize(q2)]
    return [slerp(q1, q2, k / float(steps)) for k in range(1, steps + 1)]


def fibonacci_sphere(k, max_angle=math.pi):
    """
    k low-discrepancy unit quaternions.

    Rotation axes follow the golden-angle spiral on S2 (i + 0.5 offset so no
    point sits on a pole) and rotation angles sweep (0, max_angle] with the
    index, so every sample is a distinct orientation.
    """
    if k <= 0:
        return np.zeros((0, 4))
    out = np.empty((k, 4))
    for s in range(k):
        i = s + 0.5
        polar = math.acos(1.0 - 2.0 * i / k)
        azimuth = GOLDEN_ANGLE * i
        axis = np.array([
            math.sin(polar) * math.cos(azimuth),
            math.sin(polar) * math.sin(azimuth),
            math.cos(polar),
        ])
        angle = max_angle * i / k
        out[s] = from_axis_angle(axis, angle)
    return out


def random_quaternions(k, rng):
    """Uniform random rotations (Shoemake); baseline for comparison with the Fibonacci set."""
    u1, u2, u3 = rng.random((3, k))
    a = np.sqrt(1.0 - u1)
    b = np.sqrt(u1)
    return np.stack([
        a * np.sin(2 * np.pi * u2),
        a * np.cos(2 * np.pi * u2),
        b * np.sin(2 * np.pi * u3),
        b * np.cos(2 * np.pi * u3),
    ], axis=1)


def from_ramachandran(phi, psi):
    """(phi, psi) in radians -> unit quaternion; composition of two half-angle rotations."""
    cp, sp = math.cos(phi / 2.0), math.sin(phi / 2.0)
    cs, ss = math.cos(psi / 2.0), math.sin(psi / 2.0)
    return np.array([cp * cs, sp * cs, cp * ss, sp * ss])


def to_ramachandran(q):
    """Inverse of from_ramachandran, returns (phi, psi) wrapped to (-pi, pi]."""
    w, x, y, z = normalize(q)
    # w = cp*cs, x = sp*cs, y = cp*ss, z = sp*ss
    phi = 2.0 * math.atan2(x, w) if abs(w) + abs(x) > 1e-9 else 2.0 * math.atan2(z, y)
    psi = 2.0 * math.atan2(y, w) if abs(w) + abs(y) > 1e-9 else 2.0 * math.atan2(z, x)
    return _wrap(phi), _wrap(psi)


def _wrap(a):
    return (a + math.pi) % (2.0 * math.pi) - math.pi

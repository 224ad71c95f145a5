import math
from itertools import combinations

import numpy as np

from quatfold import quaternion as quat


class TestBasics:
    def test_rotate_quarter_turn(self):
        q = quat.from_axis_angle([0, 0, 1], math.pi / 2)
        assert np.allclose(quat.rotate(q, [1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-12)

    def test_rotate_about_origin(self):
        q = quat.from_axis_angle([0, 0, 1], math.pi)
        out = quat.rotate(q, [2.0, 1.0, 0.0], origin=[1.0, 1.0, 0.0])
        assert np.allclose(out, [0.0, 1.0, 0.0], atol=1e-12)

    def test_conjugate_inverts(self):
        q = quat.normalize([0.3, -0.2, 0.8, 0.1])
        assert np.allclose(quat.multiply(q, quat.conjugate(q)), quat.IDENTITY, atol=1e-12)

    def test_axis_angle_round_trip(self):
        q = quat.from_axis_angle([1, 1, 0], 0.7)
        axis, angle = quat.to_axis_angle(q)
        assert abs(angle - 0.7) < 1e-12
        assert np.allclose(axis, np.array([1, 1, 0]) / math.sqrt(2))

    def test_zero_quaternion_normalizes_to_identity(self):
        assert np.allclose(quat.normalize([0, 0, 0, 0]), quat.IDENTITY)


class TestSlerp:
    def test_endpoints(self):
        a = quat.from_axis_angle([0, 0, 1], 0.2)
        b = quat.from_axis_angle([0, 1, 0], 1.1)
        assert np.allclose(quat.slerp(a, b, 0.0), a)
        assert np.allclose(quat.slerp(a, b, 1.0), b)

    def test_unit_norm(self):
        a = quat.from_axis_angle([1, 0, 0], 0.4)
        b = quat.from_axis_angle([0, 1, 1], 2.5)
        for t in np.linspace(0, 1, 11):
            assert abs(np.linalg.norm(quat.slerp(a, b, t)) - 1.0) < 1e-12

    def test_shortest_arc(self):
        a = quat.from_axis_angle([0, 0, 1], 0.3)
        b = quat.from_axis_angle([1, 0, 0], 1.4)
        assert np.allclose(quat.slerp(a, b, 0.4), quat.slerp(a, -b, 0.4))

    def test_constant_angular_speed(self):
        a = quat.IDENTITY
        b = quat.from_axis_angle([0, 0, 1], 1.2)
        mid = quat.slerp(a, b, 0.5)
        assert abs(quat.angle_between(a, mid) - 0.6) < 1e-9

    def test_path_length(self):
        path = quat.slerp_path(quat.IDENTITY, quat.from_axis_angle([0, 1, 0], 1.0), 5)
        assert len(path) == 5
        assert np.allclose(path[-1], quat.from_axis_angle([0, 1, 0], 1.0))


class TestFibonacciSphere:
    def test_unit_and_count(self):
        qs = quat.fibonacci_sphere(50)
        assert qs.shape == (50, 4)
        assert np.allclose(np.linalg.norm(qs, axis=1), 1.0)

    def test_samples_are_distinct(self):
        qs = quat.fibonacci_sphere(50)
        gaps = [quat.angle_between(a, b) for a, b in combinations(qs, 2)]
        assert min(gaps) > 0.05

    def test_thousand_samples_distinct(self):
        qs = quat.fibonacci_sphere(1000)
        assert np.allclose(np.linalg.norm(qs, axis=1), 1.0)
        dots = np.abs(qs @ qs.T)
        np.fill_diagonal(dots, 0.0)
        assert dots.max() < 1.0 - 1e-9

    def test_empty(self):
        assert quat.fibonacci_sphere(0).shape == (0, 4)

    def test_random_quaternions_unit(self):
        qs = quat.random_quaternions(20, np.random.default_rng(0))
        assert np.allclose(np.linalg.norm(qs, axis=1), 1.0)


class TestRamachandranMap:
    def test_round_trip(self):
        for phi, psi in ((-1.0, 2.0), (math.radians(-60), math.radians(-45)), (1.2, -3.0), (0.0, 0.0)):
            q = quat.from_ramachandran(phi, psi)
            assert abs(np.linalg.norm(q) - 1.0) < 1e-12
            got_phi, got_psi = quat.to_ramachandran(q)
            assert abs(got_phi - phi) < 1e-9
            assert abs(got_psi - psi) < 1e-9

    def test_identity_is_zero_offset(self):
        assert quat.to_ramachandran(quat.IDENTITY) == (0.0, 0.0)

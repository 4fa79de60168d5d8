"""Tests for param_delta module - parameter handles and delta algebra."""

import chex
import jax
import jax.numpy as jnp
import pytest
from absl.testing import parameterized

jax.config.update("jax_enable_x64", True)

from hessfree.linalg.param_delta import Parameter, ParamDelta, UnknownParameterError


class TestParameter(chex.TestCase):
    """Test the Parameter handle."""

    def test_value_is_float64(self):
        param = Parameter([1, 2, 3], name="w")
        assert param.value.dtype == jnp.float64
        assert param.shape == (3,)

    def test_identity_semantics(self):
        a = Parameter(jnp.zeros(2), name="same")
        b = Parameter(jnp.zeros(2), name="same")
        assert a != b
        assert len({a, b, a}) == 2

    def test_repr_uses_name(self):
        assert "bias" in repr(Parameter(jnp.zeros(4), name="bias"))


class TestParamDeltaAlgebra(chex.TestCase):
    """Vector-space laws of ParamDelta."""

    def setUp(self):
        self.w = Parameter(jnp.zeros((2, 3)), name="w")
        self.b = Parameter(jnp.zeros(3), name="b")
        key_a, key_b, key_c, key_d = jax.random.split(jax.random.PRNGKey(7), 4)
        self.a = ParamDelta(
            {
                self.w: jax.random.normal(key_a, (2, 3)),
                self.b: jax.random.normal(key_b, (3,)),
            }
        )
        self.other = ParamDelta(
            {
                self.w: jax.random.normal(key_c, (2, 3)),
                self.b: jax.random.normal(key_d, (3,)),
            }
        )

    def test_add_then_subtract_is_identity(self):
        result = self.a.copy().add(self.other, 1).add(self.other, -1)
        for param in self.a:
            chex.assert_trees_all_close(result[param], self.a[param], atol=1e-12)

    def test_dot_is_symmetric(self):
        assert self.a.dot(self.other) == pytest.approx(self.other.dot(self.a))

    @parameterized.parameters(
        {"factor": 0.0},
        {"factor": -2.5},
        {"factor": 3.0},
    )
    def test_scale_magnitude(self, factor: float):
        scaled = self.a.copy().scale(factor)
        expected = factor**2 * self.a.magnitude_squared()
        assert scaled.magnitude_squared() == pytest.approx(expected, rel=1e-12, abs=1e-12)

    def test_dot_matches_flat_inner_product(self):
        expected = jnp.sum(self.a[self.w] * self.other[self.w]) + jnp.sum(
            self.a[self.b] * self.other[self.b]
        )
        assert self.a.dot(self.other) == pytest.approx(float(expected))

    def test_add_is_in_place(self):
        before = self.a[self.b]
        returned = self.a.add(self.other, 2.0)
        assert returned is self.a
        chex.assert_trees_all_close(
            self.a[self.b], before + 2.0 * self.other[self.b], atol=1e-12
        )

    def test_copy_is_independent(self):
        duplicate = self.a.copy()
        duplicate.scale(0.0)
        assert self.a.magnitude_squared() > 0
        assert duplicate.magnitude_squared() == 0

    def test_absent_keys_act_as_zero(self):
        only_w = ParamDelta({self.w: self.a[self.w]})
        assert only_w.dot(self.other) == pytest.approx(
            float(jnp.sum(self.a[self.w] * self.other[self.w]))
        )
        empty = ParamDelta()
        empty.add(self.a, 3.0)
        chex.assert_trees_all_close(empty[self.b], 3.0 * self.a[self.b])
        untouched = self.a.copy().add(ParamDelta(), 5.0)
        chex.assert_trees_all_close(untouched[self.w], self.a[self.w])

    def test_shape_mismatch_raises(self):
        bad = ParamDelta({self.b: jnp.ones(4)})
        with pytest.raises(ValueError, match="Shape mismatch"):
            self.a.copy().add(bad)
        with pytest.raises(ValueError, match="Shape mismatch"):
            self.a.dot(bad)


class TestParamDeltaConstruction(chex.TestCase):
    """Zero deltas, snapshots, alignment and commits."""

    def setUp(self):
        self.w = Parameter(jnp.arange(6.0).reshape(2, 3), name="w")
        self.b = Parameter(jnp.ones(3), name="b")

    def test_zero_has_zero_magnitude(self):
        zero = ParamDelta.zero([self.w, self.b])
        assert zero.magnitude_squared() == 0
        chex.assert_shape(zero[self.w], (2, 3))
        chex.assert_shape(zero[self.b], (3,))

    def test_current_snapshots_values(self):
        snapshot = ParamDelta.current([self.w, self.b])
        self.b.value = jnp.zeros(3)
        chex.assert_trees_all_close(snapshot[self.b], jnp.ones(3))

    def test_aligned_orders_and_fills(self):
        delta = ParamDelta({self.b: jnp.full(3, 2.0)})
        aligned = delta.aligned([self.w, self.b])
        assert list(aligned.keys()) == [self.w, self.b]
        chex.assert_trees_all_close(aligned[self.w], jnp.zeros((2, 3)))
        chex.assert_trees_all_close(aligned[self.b], jnp.full(3, 2.0))

    def test_aligned_rejects_unknown_parameter(self):
        stranger = Parameter(jnp.zeros(2), name="stranger")
        delta = ParamDelta({stranger: jnp.ones(2)})
        with pytest.raises(UnknownParameterError, match="stranger"):
            delta.aligned([self.w, self.b])

    def test_add_to_parameters(self):
        delta = ParamDelta({self.b: jnp.array([1.0, 2.0, 3.0])})
        delta.add_to_parameters()
        chex.assert_trees_all_close(self.b.value, jnp.array([2.0, 3.0, 4.0]))
        chex.assert_trees_all_close(self.w.value, jnp.arange(6.0).reshape(2, 3))

    def test_add_to_parameters_checks_shapes_first(self):
        delta = ParamDelta({self.b: jnp.ones(3), self.w: jnp.ones(6)})
        with pytest.raises(ValueError):
            delta.add_to_parameters()
        chex.assert_trees_all_close(self.b.value, jnp.ones(3))


class TestParamDeltaPyTree(chex.TestCase):
    """ParamDelta as a JAX PyTree."""

    def setUp(self):
        self.w = Parameter(jnp.ones(3), name="w")
        self.b = Parameter(jnp.ones(2), name="b")

    def test_flatten_roundtrip_keeps_keys(self):
        delta = ParamDelta({self.w: jnp.arange(3.0), self.b: jnp.arange(2.0)})
        leaves, treedef = jax.tree_util.tree_flatten(delta)
        assert len(leaves) == 2
        rebuilt = jax.tree_util.tree_unflatten(treedef, leaves)
        assert list(rebuilt.keys()) == [self.w, self.b]

    @chex.variants(with_jit=True, without_jit=True)
    def test_transformations(self):
        delta = ParamDelta({self.w: jnp.arange(3.0), self.b: jnp.arange(2.0)})

        def squared_norm(d):
            return jnp.sum(d[self.w] ** 2) + jnp.sum(d[self.b] ** 2)

        grad = self.variant(jax.grad(squared_norm))(delta)
        assert isinstance(grad, ParamDelta)
        chex.assert_trees_all_close(grad[self.w], 2.0 * jnp.arange(3.0))
        chex.assert_trees_all_close(grad[self.b], 2.0 * jnp.arange(2.0))

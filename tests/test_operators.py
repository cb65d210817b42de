"""
Tests for the linear forward-modeling operators.
"""

import pytest
import torch
from slimflow.flows.operators import LinearOperator, MatrixOperator, as_operator


class TestMatrixOperator:
    """Dense matrices acting on batches of flattened rows."""

    def test_forward_and_adjoint(self):
        torch.manual_seed(0)
        A = torch.randn(5, 3, dtype=torch.float64)
        op = MatrixOperator(A)
        x = torch.randn(4, 3, dtype=torch.float64)
        r = torch.randn(4, 5, dtype=torch.float64)

        assert op.shape == (5, 3)
        assert torch.allclose(op.forward(x), x @ A.t())
        assert torch.allclose(op.adjoint(r), r @ A)
        assert torch.allclose(op(x), op.forward(x))

    def test_adjoint_identity(self):
        """<A x, r> == <x, A^T r> for every row of the batch."""
        torch.manual_seed(1)
        op = MatrixOperator(torch.randn(7, 4, dtype=torch.float64))
        x = torch.randn(3, 4, dtype=torch.float64)
        r = torch.randn(3, 7, dtype=torch.float64)

        lhs = torch.sum(op.forward(x) * r, dim=1)
        rhs = torch.sum(x * op.adjoint(r), dim=1)

        assert torch.allclose(lhs, rhs)

    def test_follows_input_dtype(self):
        op = MatrixOperator(torch.eye(3))
        x = torch.randn(2, 3, dtype=torch.float64)

        assert op.forward(x).dtype == torch.float64

    def test_rectangular_identity(self):
        """eye(m, n) embeds the n inputs into the first n of m outputs."""
        op = MatrixOperator(torch.eye(6, 2))
        x = torch.tensor([[1.0, 2.0]])

        assert torch.allclose(op.forward(x), torch.tensor([[1.0, 2.0, 0.0, 0.0, 0.0, 0.0]]))
        assert torch.allclose(op.adjoint(op.forward(x)), x)

    def test_non_matrix_raises(self):
        with pytest.raises(ValueError):
            MatrixOperator(torch.randn(2, 3, 4))


class TestAsOperator:
    """Coercion of user input into operators."""

    def test_wraps_tensor(self):
        op = as_operator(torch.eye(4))
        assert isinstance(op, MatrixOperator)

    def test_passes_operators_through(self):
        op = MatrixOperator(torch.eye(4))
        assert as_operator(op) is op

    def test_accepts_duck_typed_operator(self):
        class Scaling:
            def forward(self, x):
                return 2 * x

            def adjoint(self, r):
                return 2 * r

        op = Scaling()
        assert as_operator(op) is op

    @pytest.mark.parametrize("bad", [3.0, "eye", [[1.0, 0.0], [0.0, 1.0]]])
    def test_rejects_other_objects(self, bad):
        with pytest.raises(TypeError):
            as_operator(bad)

    def test_base_class_is_abstract(self):
        op = LinearOperator()
        with pytest.raises(NotImplementedError):
            op.forward(torch.zeros(1, 1))
        with pytest.raises(NotImplementedError):
            op.adjoint(torch.zeros(1, 1))


if __name__ == "__main__":
    pytest.main([__file__])

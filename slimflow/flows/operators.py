"""
Linear forward-modeling operators.

A conditional layer only needs two things from the physics of the problem:
applying the operator to a batch of flattened signals and applying its
adjoint to a batch of flattened residuals. Both act row-wise on tensors of
shape ``(batch, n)``.
"""

import torch


class LinearOperator:
    """
    Base class for linear operators A: R^n -> R^m acting on batches of rows.
    """
    def forward(self, x):
        """
        Applies the operator.

        Args:
            x (torch.Tensor): Flattened signals of shape (batch, n).

        Returns:
            torch.Tensor: Flattened observations of shape (batch, m).
        """
        raise NotImplementedError

    def adjoint(self, r):
        """
        Applies the adjoint operator.

        Args:
            r (torch.Tensor): Flattened residuals of shape (batch, m).

        Returns:
            torch.Tensor: Flattened signals of shape (batch, n).
        """
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)


class MatrixOperator(LinearOperator):
    """
    A linear operator given by a dense matrix of shape (m, n).
    """
    def __init__(self, matrix):
        if matrix.dim() != 2:
            raise ValueError(f"MatrixOperator expects a 2-D matrix, got shape {tuple(matrix.shape)}")
        self.matrix = matrix

    @property
    def shape(self):
        return tuple(self.matrix.shape)

    def _matrix_like(self, t):
        return self.matrix.to(device=t.device, dtype=t.dtype)

    def forward(self, x):
        return x @ self._matrix_like(x).t()

    def adjoint(self, r):
        return r @ self._matrix_like(r)

    def __repr__(self):
        return f"{self.__class__.__name__}(shape={self.shape})"


def as_operator(op):
    """
    Coerces ``op`` into something with ``forward`` and ``adjoint``.

    Dense matrices are wrapped into a :class:`MatrixOperator`; operator objects
    are returned unchanged.
    """
    if isinstance(op, LinearOperator):
        return op
    if isinstance(op, torch.Tensor):
        return MatrixOperator(op)
    if callable(getattr(op, "forward", None)) and callable(getattr(op, "adjoint", None)):
        return op
    raise TypeError(
        f"Expected a 2-D tensor or an operator with forward/adjoint, got {type(op).__name__}"
    )

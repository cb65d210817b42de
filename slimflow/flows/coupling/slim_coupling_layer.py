import logging

import torch
from slimflow.flows.flow.flow import InvertibleLayer, _grad_or_zeros
from slimflow.flows.coupling.conv_block import ConvBlock
from slimflow.flows.coupling.coupling_layer import sigmoid_scale
from slimflow.flows.operators import as_operator
from slimflow.flows.permutation.conv1x1 import Conv1x1

logger = logging.getLogger(__name__)


class CouplingLayerSLIM(InvertibleLayer):
    """
    Affine coupling conditioned on observed data through a linear operator.

    The input is split into (x1, x2). Besides x1 itself, the conditioner sees
    the gradient of the data misfit 0.5 * ||A x1 - d||^2,
        g = A^T (A x1 - d),
    reshaped to the shape of x1. It then produces a log-scale s and a shift t
    for the other half:
        y1 = x1,   y2 = S * x2 + t,   S = 2 * sigmoid(s)

    The operator A maps flattened x1 (nx1 * nx2 * n_in / 2 values per sample)
    onto the flattened observation d.

    Args:
        nx1, nx2 (int): Spatial dimensions of the input.
        n_in (int): Number of input channels, must be even.
        n_hidden (int): Hidden channels of the conditioner network.
        batchsize (int): Batch size the layer is built for.
        k1, k2, p1, p2 (int): Kernel sizes and paddings of the conditioner.
        logdet (bool): Whether ``forward`` also returns the log-determinant.
        permute (bool): Whether to apply an own 1x1 permutation first.
    """
    def __init__(self, nx1, nx2, n_in, n_hidden, batchsize, k1=3, k2=3, p1=1, p2=1,
                 logdet=False, permute=False):
        super().__init__()
        if n_in % 2 != 0:
            raise ValueError(f"CouplingLayerSLIM needs an even channel count, got {n_in}")

        self.nx1 = nx1
        self.nx2 = nx2
        self.n_in = n_in
        self.n_hidden = n_hidden
        self.batchsize = batchsize
        self.logdet = logdet
        self.permute = permute

        n_half = n_in // 2
        # Conditioner input: x1 stacked with the misfit gradient (n_half channels each)
        self.conditioner = ConvBlock(2 * n_half, n_hidden, n_out=2 * n_half, k1=k1, k2=k2, p1=p1, p2=p2)
        self.C = Conv1x1(n_in) if permute else None

        logger.debug("Built CouplingLayerSLIM(n_in=%d, permute=%s)", n_in, permute)

    def _misfit_gradient(self, x1, op, d):
        op = as_operator(op)
        batch_size = x1.shape[0]
        residual = op.forward(x1.reshape(batch_size, -1)) - d
        return op.adjoint(residual).reshape(x1.shape)

    def _scale_shift(self, x1, op, d):
        g = self._misfit_gradient(x1, op, d)
        log_s, t = self.conditioner(torch.cat([x1, g], dim=1)).chunk(2, dim=1)
        S, log_S = sigmoid_scale(log_s)
        return S, log_S, t

    def forward(self, x, op, d):
        """
        Computes z = f(x; A, d).

        Args:
            x (torch.Tensor): Input of shape (batch, n_in, nx1, nx2).
            op: Linear operator or dense matrix.
            d (torch.Tensor): Flattened observations of shape (batch, m).

        Returns:
            torch.Tensor: The transformed tensor.
            torch.Tensor: The per-sample log-determinant, if ``logdet=True``.
        """
        if self.C is not None:
            x = self.C.forward(x)

        x1, x2 = x.chunk(2, dim=1)
        S, log_S, t = self._scale_shift(x1, op, d)
        z = torch.cat([x1, S * x2 + t], dim=1)

        if self.logdet:
            return z, log_S.sum(dim=(1, 2, 3))
        return z

    def inverse(self, z, op, d):
        """
        Computes x = f^-1(z; A, d).
        """
        z1, z2 = z.chunk(2, dim=1)
        S, _, t = self._scale_shift(z1, op, d)
        x = torch.cat([z1, (z2 - t) / S], dim=1)

        if self.C is not None:
            x = self.C.inverse(x)
        return x

    def backward(self, dz, z, op, d):
        """
        Back-propagates ``dz`` through the layer, rebuilding the input from ``z``.

        Returns:
            torch.Tensor: Gradient with respect to the layer input.
            torch.Tensor: The reconstructed layer input.
            torch.Tensor: Gradient with respect to the observations ``d``.
        """
        with torch.no_grad():
            x = self.inverse(z, op, d)
        x = x.detach().requires_grad_(True)
        d = d.detach().requires_grad_(True)
        with torch.enable_grad():
            self._backpropagate(self.forward(x, op, d), dz)
        return _grad_or_zeros(x), x.detach(), _grad_or_zeros(d)

    def extra_repr(self):
        return (f"nx1={self.nx1}, nx2={self.nx2}, n_in={self.n_in}, "
                f"n_hidden={self.n_hidden}, logdet={self.logdet}, permute={self.permute}")

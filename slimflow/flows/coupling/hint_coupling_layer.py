import logging

import torch
import torch.nn as nn
from slimflow.flows.flow.flow import InvertibleLayer
from slimflow.flows.coupling.coupling_layer import AffineCouplingBlock
from slimflow.flows.permutation.conv1x1 import Conv1x1

logger = logging.getLogger(__name__)

PERMUTE_MODES = ("none", "full", "both")


class CouplingLayerHINT(InvertibleLayer):
    """
    Hierarchical Invertible Neural Transport (HINT) coupling layer.

    The channels are split in two halves (xa, xb). The lower half xb is coupled
    to xa, and both halves are then transformed recursively by the same scheme
    until single channels remain. Depth j of the recursion uses its own affine
    coupling, shared by both branches at that depth, so a layer over n_in
    channels holds log2(n_in) couplings.

    Args:
        nx1, nx2 (int): Spatial dimensions of the input.
        n_in (int): Number of input channels, a power of two.
        n_hidden (int): Hidden channels of the conditioner networks.
        batchsize (int): Batch size the layer is built for.
        k1, k2, p1, p2 (int): Kernel sizes and paddings of the conditioners.
        logdet (bool): Whether ``forward`` also returns the log-determinant.
        permute (str): ``"none"``, ``"full"`` (own 1x1 permutation before the
            coupling) or ``"both"`` (before, and undone after).
    """
    def __init__(self, nx1, nx2, n_in, n_hidden, batchsize, k1=3, k2=3, p1=1, p2=1,
                 logdet=False, permute="none"):
        super().__init__()
        if n_in < 2 or n_in & (n_in - 1) != 0:
            raise ValueError(f"CouplingLayerHINT needs a power-of-two channel count >= 2, got {n_in}")
        if permute not in PERMUTE_MODES:
            raise ValueError(f"Unknown permute mode: {permute}, expected one of {PERMUTE_MODES}")

        self.nx1 = nx1
        self.nx2 = nx2
        self.n_in = n_in
        self.n_hidden = n_hidden
        self.batchsize = batchsize
        self.logdet = logdet
        self.permute = permute

        depth = n_in.bit_length() - 1
        self.couplings = nn.ModuleList([
            AffineCouplingBlock(n_in >> (j + 1), n_hidden, k1=k1, k2=k2, p1=p1, p2=p2)
            for j in range(depth)
        ])
        self.C = Conv1x1(n_in) if permute != "none" else None

        logger.debug("Built CouplingLayerHINT(n_in=%d, depth=%d, permute=%s)", n_in, depth, permute)

    def _forward_level(self, x, level):
        xa, xb = x.chunk(2, dim=1)
        coupling = self.couplings[level]
        if xa.shape[1] > 1:
            ya, log_det_a = self._forward_level(xa, level + 1)
            yb_coupled, log_det_c = coupling(xa, xb)
            yb, log_det_b = self._forward_level(yb_coupled, level + 1)
            log_det_J = log_det_a + log_det_c + log_det_b
        else:
            ya = xa
            yb, log_det_J = coupling(xa, xb)
        return torch.cat([ya, yb], dim=1), log_det_J

    def _inverse_level(self, y, level):
        ya, yb = y.chunk(2, dim=1)
        coupling = self.couplings[level]
        if ya.shape[1] > 1:
            xa = self._inverse_level(ya, level + 1)
            yb_coupled = self._inverse_level(yb, level + 1)
            xb = coupling.inverse(xa, yb_coupled)
        else:
            xa = ya
            xb = coupling.inverse(xa, yb)
        return torch.cat([xa, xb], dim=1)

    def forward(self, x):
        """
        Computes z = f(x).

        Returns:
            torch.Tensor: The transformed tensor.
            torch.Tensor: The per-sample log-determinant, if ``logdet=True``.
        """
        if self.permute in ("full", "both"):
            x = self.C.forward(x)

        z, log_det_J = self._forward_level(x, 0)

        if self.permute == "both":
            z = self.C.inverse(z)

        if self.logdet:
            return z, log_det_J
        return z

    def inverse(self, z):
        """
        Computes x = f^-1(z), undoing the couplings in reverse order.
        """
        if self.permute == "both":
            z = self.C.forward(z)

        x = self._inverse_level(z, 0)

        if self.permute in ("full", "both"):
            x = self.C.inverse(x)
        return x

    def extra_repr(self):
        return (f"nx1={self.nx1}, nx2={self.nx2}, n_in={self.n_in}, "
                f"n_hidden={self.n_hidden}, logdet={self.logdet}, permute={self.permute!r}")

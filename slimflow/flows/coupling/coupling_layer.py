import math

import torch
import torch.nn as nn
import torch.nn.functional as F
from slimflow.flows.coupling.conv_block import ConvBlock


def sigmoid_scale(log_s):
    """Scale S = 2 * sigmoid(log_s) in (0, 2) and its log, S = 1 at log_s = 0."""
    log_scale = F.logsigmoid(log_s) + math.log(2.0)
    return torch.exp(log_scale), log_scale


class AffineCouplingBlock(nn.Module):
    """
    Implements the basic affine coupling used by the HINT layer.

    Given the conditioning half x1 and the transformed half x2 (same channel
    count), the conditioner network produces a log-scale s and a shift t:
        y2 = S * x2 + t,   S = 2 * sigmoid(s)
    The conditioning half passes through unchanged and is not returned.
    """
    def __init__(self, n_in, n_hidden, k1=3, k2=3, p1=1, p2=1):
        super().__init__()
        self.n_in = n_in
        self.conditioner = ConvBlock(n_in, n_hidden, n_out=2 * n_in, k1=k1, k2=k2, p1=p1, p2=p2)

    def _scale_shift(self, x1):
        log_s, t = self.conditioner(x1).chunk(2, dim=1)
        S, log_S = sigmoid_scale(log_s)
        return S, log_S, t

    def forward(self, x1, x2):
        """
        Computes y2 = S(x1) * x2 + t(x1).

        Returns:
            torch.Tensor: The transformed half y2.
            torch.Tensor: The per-sample log-determinant of the coupling.
        """
        S, log_S, t = self._scale_shift(x1)
        y2 = S * x2 + t
        log_det_J = log_S.sum(dim=(1, 2, 3))
        return y2, log_det_J

    def inverse(self, x1, y2):
        """
        Computes x2 = (y2 - t(x1)) / S(x1).
        """
        S, _, t = self._scale_shift(x1)
        return (y2 - t) / S

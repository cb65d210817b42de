import torch
import torch.nn as nn
import torch.nn.functional as F
from slimflow.flows.flow.flow import InvertibleLayer


class Conv1x1(InvertibleLayer):
    """
    Orthogonal 1x1 convolution used as a learned channel permutation.

    The weight is a product of Householder reflections
        W = H_3 H_2 H_1,   H_i = I - 2 v_i v_i^T / ||v_i||^2,
    so it stays orthogonal for any trainable vectors v_i. The inverse is the
    transpose and the log-determinant is zero.
    """
    def __init__(self, channels, num_reflections=3):
        super().__init__()
        if channels < 1:
            raise ValueError(f"Conv1x1 needs at least one channel, got {channels}")
        self.channels = channels
        self.num_reflections = num_reflections
        self.v = nn.ParameterList(
            [nn.Parameter(torch.randn(channels)) for _ in range(num_reflections)]
        )

    def weight(self):
        W = torch.eye(self.channels, device=self.v[0].device, dtype=self.v[0].dtype)
        for v in self.v:
            H = torch.eye(self.channels, device=v.device, dtype=v.dtype) - 2.0 * torch.outer(v, v) / torch.dot(v, v)
            W = H @ W
        return W

    def _mix(self, x, W):
        W = W.to(dtype=x.dtype)
        return F.conv2d(x, W.view(self.channels, self.channels, 1, 1))

    def forward(self, x):
        return self._mix(x, self.weight())

    def inverse(self, z):
        return self._mix(z, self.weight().t())

    def inverse_joint(self, dz, z):
        """
        Inverts an (gradient, activation) pair in one pass.

        Args:
            dz (torch.Tensor): Gradient with respect to the layer output.
            z (torch.Tensor): The layer output.

        Returns:
            torch.Tensor: Gradient with respect to the layer input.
            torch.Tensor: The reconstructed layer input.
        """
        return self.backward(dz, z)

    def extra_repr(self):
        return f"channels={self.channels}, num_reflections={self.num_reflections}"

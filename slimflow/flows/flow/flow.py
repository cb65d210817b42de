import logging

import torch
import torch.nn as nn

logger = logging.getLogger(__name__)


class InvertibleLayer(nn.Module):
    """
    Base class for invertible layers with a memory-efficient backward pass.

    Subclasses implement ``forward`` and ``inverse``. The ``backward`` pass does
    not rely on activations stored by an earlier ``forward`` call: it rebuilds
    the layer input from the output, replays the forward transformation on the
    rebuilt input and back-propagates the incoming gradient through it.
    """
    def __init__(self):
        super().__init__()
        self.logdet = False

    def forward(self, x, *args):
        """
        Computes the forward transformation z = f(x).

        Args:
            x (torch.Tensor): The layer input.

        Returns:
            torch.Tensor: The transformed tensor.
            torch.Tensor: The per-sample log-determinant of the Jacobian of f,
                only when the layer was built with ``logdet=True``.
        """
        raise NotImplementedError

    def inverse(self, z, *args):
        """
        Computes the inverse transformation x = f^-1(z).

        Args:
            z (torch.Tensor): The layer output.

        Returns:
            torch.Tensor: The reconstructed input.
        """
        raise NotImplementedError

    def backward(self, dz, z, *args):
        """
        Back-propagates ``dz`` through the layer, rebuilding the input from ``z``.

        The gradient is taken of ``<dz, f(x)> - mean(logdet(x))``, the second
        term only for layers that produce a log-determinant. Parameter gradients
        accumulate into ``.grad``.

        Args:
            dz (torch.Tensor): Gradient with respect to the layer output.
            z (torch.Tensor): The layer output.

        Returns:
            torch.Tensor: Gradient with respect to the layer input.
            torch.Tensor: The reconstructed layer input.
        """
        with torch.no_grad():
            x = self.inverse(z, *args)
        x = x.detach().requires_grad_(True)
        with torch.enable_grad():
            self._backpropagate(self.forward(x, *args), dz)
        return _grad_or_zeros(x), x.detach()

    def _backpropagate(self, outputs, dz):
        if isinstance(outputs, tuple):
            z, logdet = outputs
            # logdet enters the objective averaged over the batch
            dlogdet = -torch.ones_like(logdet) / logdet.shape[0]
            tensors, grads = [z, logdet], [dz, dlogdet]
        else:
            tensors, grads = [outputs], [dz]
        pairs = [(t, g) for t, g in zip(tensors, grads) if t.requires_grad]
        if pairs:
            torch.autograd.backward([t for t, _ in pairs], [g for _, g in pairs])

    def get_params(self):
        """Returns the trainable parameters in registration order."""
        return [p for p in self.parameters() if p.requires_grad]

    def clear_grad(self):
        """Resets the accumulated gradients of all trainable parameters."""
        for p in self.get_params():
            p.grad = None
        logger.debug("Cleared gradients of %s", type(self).__name__)


def _grad_or_zeros(t):
    return torch.zeros_like(t) if t.grad is None else t.grad

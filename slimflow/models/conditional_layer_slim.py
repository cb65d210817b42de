import logging

import torch.nn as nn
from slimflow.config import ConditionalLayerSLIMConfig
from slimflow.flows.coupling.hint_coupling_layer import CouplingLayerHINT
from slimflow.flows.coupling.slim_coupling_layer import CouplingLayerSLIM
from slimflow.flows.operators import as_operator
from slimflow.flows.permutation.conv1x1 import Conv1x1
from slimflow.flows.wavelet.haar import wavelet_squeeze, wavelet_unsqueeze

logger = logging.getLogger(__name__)


def _flatten(t):
    return t.reshape(t.shape[0], -1)


class ConditionalLayerSLIM(nn.Module):
    """
    Conditional SLIM layer based on the HINT architecture.

    Maps a signal X and an observation Y to latent variables (Zx, Zy) through
    two lanes:

        Y-lane: wavelet squeeze -> C_Y -> CL_Y (HINT) -> wavelet unsqueeze
        X-lane: C_X -> CL_X (HINT) -> CL_XY (SLIM, conditioned on Y through Op)

    The Y-lane is always resolved first, because CL_XY consumes Y.

    Args:
        nx1, nx2 (int): Spatial dimensions of X.
        nx_in, nx_hidden (int): Input and hidden channels of X.
        ny1, ny2 (int): Spatial dimensions of Y.
        ny_in, ny_hidden (int): Input and hidden channels of Y.
        batchsize (int): Batch size the layer is built for.
        op: Linear forward-modeling operator (dense matrix or an object with
            ``forward``/``adjoint``) mapping half of the channels of X onto
            flattened Y.
        k1, k2 (int): Kernel of the first/third and of the second convolution
            of the conditioner networks.
        p1, p2 (int): Padding of the first and of the second convolution.

    Trainable parameters live in the coupling layers CL_X, CL_Y, CL_XY and the
    permutation layers C_X, C_Y; the layer itself has none.
    """
    def __init__(self, nx1, nx2, nx_in, nx_hidden, ny1, ny2, ny_in, ny_hidden,
                 batchsize, op, k1=4, k2=3, p1=0, p2=1):
        super().__init__()
        if ny1 % 2 != 0 or ny2 % 2 != 0:
            raise ValueError(f"ConditionalLayerSLIM needs even Y dims for the wavelet squeeze, got {ny1}x{ny2}")

        kernels = {'k1': k1, 'k2': k2, 'p1': p1, 'p2': p2}
        self.CL_X = CouplingLayerHINT(nx1, nx2, nx_in, nx_hidden, batchsize, logdet=True, **kernels)
        self.CL_Y = CouplingLayerHINT(ny1 // 2, ny2 // 2, 4 * ny_in, ny_hidden, batchsize, logdet=True, **kernels)
        self.CL_XY = CouplingLayerSLIM(nx1, nx2, nx_in, nx_hidden, batchsize, logdet=True, permute=False, **kernels)

        self.C_X = Conv1x1(nx_in)
        self.C_Y = Conv1x1(4 * ny_in)

        self.op = as_operator(op)
        self.x_dims = (nx_in, nx1, nx2)
        self.y_dims = (ny_in, ny1, ny2)

        logger.debug(
            "Built ConditionalLayerSLIM with X %s and Y %s (squeezed %s)",
            self.x_dims, self.y_dims, (4 * ny_in, ny1 // 2, ny2 // 2),
        )

    @classmethod
    def from_config(cls, config, op):
        """Builds a layer from a ConditionalLayerSLIMConfig or a plain dict."""
        if isinstance(config, dict):
            config = ConditionalLayerSLIMConfig.from_dict(config)
        return cls(config.nx1, config.nx2, config.nx_in, config.nx_hidden,
                   config.ny1, config.ny2, config.ny_in, config.ny_hidden,
                   config.batchsize, op, **config.kernel_kwargs)

    def forward(self, X, Y):
        """
        Computes (Zx, Zy) and the summed log-determinant.

        Returns:
            torch.Tensor: Zx, same shape as X.
            torch.Tensor: Zy, same shape as Y.
            torch.Tensor: Per-sample log-determinant logdet1 + logdet2 + logdet3.
        """
        # Y-lane
        Ys = wavelet_squeeze(Y)
        Yp = self.C_Y.forward(Ys)
        Zy, logdet2 = self.CL_Y.forward(Yp)
        Zy = wavelet_unsqueeze(Zy)

        # X-lane
        Xp = self.C_X.forward(X)
        X_mid, logdet1 = self.CL_X.forward(Xp)
        Zx, logdet3 = self.CL_XY.forward(X_mid, self.op, _flatten(Y))

        logdet = logdet1 + logdet2 + logdet3
        return Zx, Zy, logdet

    def inverse(self, Zx, Zy):
        """
        Computes (X, Y) from (Zx, Zy).
        """
        # Y-lane
        Y = self.inverse_Y(Zy)

        # X-lane
        X_mid = self.CL_XY.inverse(Zx, self.op, _flatten(Y))
        Xp = self.CL_X.inverse(X_mid)
        X = self.C_X.inverse(Xp)

        return X, Y

    def backward(self, dZx, dZy, Zx, Zy):
        """
        Back-propagates (dZx, dZy), rebuilding every intermediate activation
        from (Zx, Zy) instead of reusing activations of an earlier forward call.

        The gradients are those of <dZx, Zx> + <dZy, Zy> - mean(logdet).
        Parameter gradients accumulate into ``.grad`` of the sub-layers.

        Returns:
            torch.Tensor: dX, gradient with respect to X.
            torch.Tensor: dY, gradient with respect to Y, including the part
                that flows through the conditioning of CL_XY.
            torch.Tensor: X, the reconstructed signal.
            torch.Tensor: Y, the reconstructed observation.
        """
        # Y-lane
        dZy = wavelet_squeeze(dZy)
        Zy = wavelet_squeeze(Zy)
        dYp, Yp = self.CL_Y.backward(dZy, Zy)
        dYs, Ys = self.C_Y.inverse_joint(dYp, Yp)
        Y = wavelet_unsqueeze(Ys)
        dY = wavelet_unsqueeze(dYs)

        # X-lane
        dX_mid, X_mid, dD = self.CL_XY.backward(dZx, Zx, self.op, _flatten(Y))
        dXp, Xp = self.CL_X.backward(dX_mid, X_mid)
        dX, X = self.C_X.inverse_joint(dXp, Xp)

        dY = dY + dD.reshape(Y.shape)
        return dX, dY, X, Y

    def forward_Y(self, Y):
        """
        Runs the Y-lane only, Y -> Zy. The log-determinant is discarded.
        """
        Ys = wavelet_squeeze(Y)
        Yp = self.C_Y.forward(Ys)
        Zy, _ = self.CL_Y.forward(Yp)
        return wavelet_unsqueeze(Zy)

    def inverse_Y(self, Zy):
        """
        Inverts the Y-lane only, Zy -> Y.
        """
        Zy = wavelet_squeeze(Zy)
        Yp = self.CL_Y.inverse(Zy)
        Ys = self.C_Y.inverse(Yp)
        return wavelet_unsqueeze(Ys)

    def get_params(self):
        """
        Returns the trainable parameters of CL_X, CL_Y, CL_XY, C_X and C_Y,
        in that order.
        """
        params = []
        for layer in (self.CL_X, self.CL_Y, self.CL_XY, self.C_X, self.C_Y):
            params.extend(layer.get_params())
        return params

    def clear_grad(self):
        """Resets the accumulated gradients of all sub-layers."""
        for layer in (self.CL_X, self.CL_Y, self.CL_XY, self.C_X, self.C_Y):
            layer.clear_grad()

    def extra_repr(self):
        return f"x_dims={self.x_dims}, y_dims={self.y_dims}, op={self.op!r}"

import torch.nn as nn


class ConvBlock(nn.Module):
    """
    Convolutional conditioner network used inside the coupling layers.

    conv(k1, p1) -> ReLU -> conv(k2, p2) -> ReLU -> transposed conv(k1)

    The padding of the last (transposed) convolution is derived from the other
    three so that the block maps an (H, W) grid back onto (H, W):
        p3 = p1 + p2 - (k2 - 1) / 2
    """
    def __init__(self, n_in, n_hidden, n_out=None, k1=3, k2=3, p1=1, p2=1):
        super().__init__()
        n_out = 2 * n_in if n_out is None else n_out

        twice_p3 = 2 * (p1 + p2) - (k2 - 1)
        if twice_p3 < 0 or twice_p3 % 2 != 0:
            raise ValueError(
                f"Kernel/padding combination k1={k1}, k2={k2}, p1={p1}, p2={p2} "
                f"does not map the input grid back onto itself"
            )
        p3 = twice_p3 // 2

        self.n_in = n_in
        self.n_hidden = n_hidden
        self.n_out = n_out
        self.net = nn.Sequential(
            nn.Conv2d(n_in, n_hidden, k1, padding=p1),
            nn.ReLU(),
            nn.Conv2d(n_hidden, n_hidden, k2, padding=p2),
            nn.ReLU(),
            nn.ConvTranspose2d(n_hidden, n_out, k1, padding=p3),
        )

        self._initialize_weights()

    def _initialize_weights(self):
        for layer in self.net[:-1]:
            if isinstance(layer, nn.Conv2d):
                nn.init.xavier_normal_(layer.weight, gain=1.0)
                nn.init.zeros_(layer.bias)

        # Zero output makes every coupling start as the identity
        nn.init.zeros_(self.net[-1].weight)
        nn.init.zeros_(self.net[-1].bias)

    def forward(self, x):
        return self.net(x)

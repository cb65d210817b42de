import torch


def wavelet_squeeze(x):
    """
    Orthonormal Haar wavelet squeeze (B, C, H, W) -> (B, 4C, H/2, W/2).

    Every 2x2 block of a channel is replaced by its four Haar coefficients
    (LL, LH, HL, HH), stored as consecutive output channels.
    """
    batch, channels, height, width = x.shape
    if height % 2 != 0 or width % 2 != 0:
        raise ValueError(f"wavelet_squeeze needs even spatial dims, got {height}x{width}")

    a = x[:, :, 0::2, 0::2]
    b = x[:, :, 0::2, 1::2]
    c = x[:, :, 1::2, 0::2]
    d = x[:, :, 1::2, 1::2]

    ll = (a + b + c + d) / 2
    lh = (a - b + c - d) / 2
    hl = (a + b - c - d) / 2
    hh = (a - b - c + d) / 2

    y = torch.stack([ll, lh, hl, hh], dim=2)
    return y.reshape(batch, 4 * channels, height // 2, width // 2)


def wavelet_unsqueeze(y):
    """
    Inverse of :func:`wavelet_squeeze`, (B, 4C, H, W) -> (B, C, 2H, 2W).

    The Haar basis is orthonormal, so this is also the adjoint of the squeeze
    and maps gradients the same way it maps activations.
    """
    batch, channels, height, width = y.shape
    if channels % 4 != 0:
        raise ValueError(f"wavelet_unsqueeze needs a channel count divisible by 4, got {channels}")

    y = y.reshape(batch, channels // 4, 4, height, width)
    ll, lh, hl, hh = y.unbind(dim=2)

    a = (ll + lh + hl + hh) / 2
    b = (ll - lh + hl - hh) / 2
    c = (ll + lh - hl - hh) / 2
    d = (ll - lh - hl + hh) / 2

    # (B, C, H, 2, W, 2): row parity before width, column parity last
    top = torch.stack([a, b], dim=-1)
    bottom = torch.stack([c, d], dim=-1)
    x = torch.stack([top, bottom], dim=3)
    return x.reshape(batch, channels // 4, 2 * height, 2 * width)

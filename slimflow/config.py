"""
Configuration for the conditional SLIM layer.

The layer is built once from static dimensions; this dataclass groups them so
that a layer can be described in a plain dict (e.g. loaded from a YAML/JSON
experiment file) and rebuilt with :meth:`ConditionalLayerSLIM.from_config`.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Tuple


@dataclass
class ConditionalLayerSLIMConfig:
    """
    Static construction parameters of a ConditionalLayerSLIM.

    Dimensions:
        nx1, nx2: spatial dimensions of X
        nx_in, nx_hidden: input and hidden channels of X
        ny1, ny2: spatial dimensions of Y
        ny_in, ny_hidden: input and hidden channels of Y
        batchsize: batch size the layer is built for

    Conditioner networks:
        k1: kernel of the first and third convolution
        k2: kernel of the second convolution
        p1, p2: padding of the first and of the second convolution
    """
    nx1: int
    nx2: int
    nx_in: int
    nx_hidden: int
    ny1: int
    ny2: int
    ny_in: int
    ny_hidden: int
    batchsize: int

    k1: int = 4
    k2: int = 3
    p1: int = 0
    p2: int = 1

    @property
    def x_shape(self) -> Tuple[int, int, int, int]:
        return (self.batchsize, self.nx_in, self.nx1, self.nx2)

    @property
    def y_shape(self) -> Tuple[int, int, int, int]:
        return (self.batchsize, self.ny_in, self.ny1, self.ny2)

    @property
    def y_squeezed_shape(self) -> Tuple[int, int, int, int]:
        """Shape of Y after the wavelet squeeze."""
        return (self.batchsize, 4 * self.ny_in, self.ny1 // 2, self.ny2 // 2)

    @property
    def kernel_kwargs(self) -> Dict[str, int]:
        return {'k1': self.k1, 'k2': self.k2, 'p1': self.p1, 'p2': self.p2}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'ConditionalLayerSLIMConfig':
        """Create config from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in config_dict.items() if k in known})

from .flow.flow import InvertibleLayer
from .operators import LinearOperator, MatrixOperator, as_operator
from .wavelet.haar import wavelet_squeeze, wavelet_unsqueeze
from .permutation.conv1x1 import Conv1x1
from .coupling.conv_block import ConvBlock
from .coupling.coupling_layer import AffineCouplingBlock
from .coupling.hint_coupling_layer import CouplingLayerHINT
from .coupling.slim_coupling_layer import CouplingLayerSLIM

__all__ = [
    "InvertibleLayer",
    "LinearOperator",
    "MatrixOperator",
    "as_operator",
    "wavelet_squeeze",
    "wavelet_unsqueeze",
    "Conv1x1",
    "ConvBlock",
    "AffineCouplingBlock",
    "CouplingLayerHINT",
    "CouplingLayerSLIM",
]

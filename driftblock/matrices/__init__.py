"""Block matrices and their type registry."""

from .registry import MATRIX_REGISTRY, get_matrix_type, register_matrix, resolve_matrix_type
from .base import (
    BlockMatrix,
    blocks_equal,
    construct,
    create,
    load,
    map_blocks,
    similar,
)
from .block_diagonal import BlockDiagonalMatrix, MFBlockMatrix
from .transfer import TransferMatrix, create_transfer_matrix

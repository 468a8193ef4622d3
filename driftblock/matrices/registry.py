"""Matrix type registry: type tag (class name) -> class."""

from typing import Dict, Type, Union

from ..errors import ConstructionError, ReconstructionError

MATRIX_REGISTRY: Dict[str, Type] = {}


def register_matrix(cls):
    """Class decorator: make `cls` constructible by tag and reloadable from disk."""
    MATRIX_REGISTRY[cls.__name__] = cls
    return cls


def get_matrix_type(tag: str) -> Type:
    """Get a matrix class by its persisted type tag."""
    if tag not in MATRIX_REGISTRY:
        raise ReconstructionError(
            f"Unknown matrix type '{tag}'. "
            f"Available: {list(MATRIX_REGISTRY.keys())}"
        )
    return MATRIX_REGISTRY[tag]


def resolve_matrix_type(kind: Union[str, Type]) -> Type:
    """Canonical registered class for a tag or for a (possibly derived) class."""
    if isinstance(kind, str):
        if kind not in MATRIX_REGISTRY:
            raise ConstructionError(
                f"Unknown matrix type '{kind}'. "
                f"Available: {list(MATRIX_REGISTRY.keys())}"
            )
        return MATRIX_REGISTRY[kind]
    if isinstance(kind, type):
        for klass in kind.__mro__:
            if MATRIX_REGISTRY.get(klass.__name__) is klass:
                return klass
    raise ConstructionError(f"{kind!r} is not a registered matrix type")

"""DRIFTBLOCK HDF5 I/O.

Block containers and the matrix metadata record.

Matrix record format v1.0:

  METADATA.h5
  ├── attrs: version, created_at, driftblock_version, type
  ├── storage/               storage mechanism descriptor
  │   ├── attrs: type
  │   └── hierarchy/         [HierarchicalStorage only]
  └── fields/                constructor fields, in declaration order
      ├── attrs: order (JSON list of field names), scalar fields
      ├── {array field}      dataset
      └── {object field}/    group, attrs: kind

Block containers hold one dataset per block, keyed by a fixed-width decimal
name ("0003", "0003-0012"). Writes replace an existing dataset of the same
name. Files are always opened through h5py file handles, never memory-mapped.
"""

from __future__ import annotations

import json
import os
import time
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import h5py
import numpy as np

logger = logging.getLogger("driftblock")

RECORD_VERSION = "1.0"
RECORD_FILENAME = "METADATA.h5"

# kind name -> class with write_hdf5(group) and read_hdf5(group)
_KINDS: Dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------

def block_key(*index: int) -> str:
    """Fixed-width dataset name for a block index."""
    return "-".join(f"{int(i):04d}" for i in index)


def register_hdf5_kind(cls):
    """Class decorator: allow instances of `cls` to be stored as record fields."""
    _KINDS[cls.__name__] = cls
    return cls


def _path_exists(path: str) -> bool:
    return os.path.isfile(path)


def _open(path: str, mode: str = "r"):
    return h5py.File(path, mode)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

def write_dataset(path: str, key: str, data: np.ndarray, compression: Optional[str] = None) -> None:
    """Write or replace one dataset in an HDF5 container."""
    mode = "a" if _path_exists(path) else "w"
    with _open(path, mode) as f:
        if key in f:
            del f[key]
        f.create_dataset(key, data=data, compression=compression)


def read_dataset(path: str, key: str) -> np.ndarray:
    """Read one dataset in full."""
    with _open(path, "r") as f:
        if key not in f:
            raise KeyError(f"Block not found in {path}: {key}")
        return f[key][()]


def read_datasets(path: str, keys: Iterable[str]) -> List[np.ndarray]:
    """Read several datasets from one container with a single file open."""
    with _open(path, "r") as f:
        out = []
        for key in keys:
            if key not in f:
                raise KeyError(f"Block not found in {path}: {key}")
            out.append(f[key][()])
        return out


def delete_dataset(path: str, key: str) -> None:
    if not _path_exists(path):
        return
    with _open(path, "a") as f:
        if key in f:
            del f[key]


# ---------------------------------------------------------------------------
# Value codec for record fields
# ---------------------------------------------------------------------------

def write_value(group: h5py.Group, name: str, value: Any) -> None:
    """Store one named value under `group` as an attr, dataset or subgroup."""
    if isinstance(value, np.ndarray):
        group.create_dataset(name, data=value)
    elif isinstance(value, (bool, int, float, str, np.generic)):
        group.attrs[name] = value
    elif type(value).__name__ in _KINDS:
        sub = group.create_group(name)
        sub.attrs["kind"] = type(value).__name__
        value.write_hdf5(sub)
    elif isinstance(value, (list, tuple, dict)):
        group.attrs[name] = json.dumps(value)
        group.attrs[f"{name}__json"] = True
    else:
        raise TypeError(f"Cannot store field '{name}' of type {type(value).__name__}")


def _names(group: h5py.Group) -> List[str]:
    attrs = [k for k in group.attrs if not k.endswith("__json") and k != "kind"]
    return attrs + list(group)


def read_value(group: h5py.Group, name: str) -> Any:
    """Inverse of write_value."""
    if name in group:
        obj = group[name]
        if isinstance(obj, h5py.Dataset):
            return obj[()]
        kind = obj.attrs.get("kind")
        if kind not in _KINDS:
            raise KeyError(f"Unknown stored kind '{kind}' for field '{name}'")
        return _KINDS[kind].read_hdf5(obj)
    if name not in group.attrs:
        raise KeyError(f"Field '{name}' not found in {group.name}")
    value = group.attrs[name]
    if group.attrs.get(f"{name}__json", False):
        return json.loads(value)
    if isinstance(value, bytes):
        return value.decode()
    if isinstance(value, np.generic):
        return value.item()
    return value


# ---------------------------------------------------------------------------
# Matrix record
# ---------------------------------------------------------------------------

def write_metadata_record(
    root: str,
    type_tag: str,
    fields: List[Tuple[str, Any]],
    storage: Dict[str, Any],
) -> str:
    """Write the (type, fields, storage) record that `load` reconstructs from."""
    from .. import __version__

    os.makedirs(root, exist_ok=True)
    path = os.path.join(root, RECORD_FILENAME)
    with _open(path, "w") as f:
        f.attrs["version"] = RECORD_VERSION
        f.attrs["created_at"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        f.attrs["driftblock_version"] = __version__
        f.attrs["type"] = type_tag

        sgrp = f.create_group("storage")
        for k, v in storage.items():
            write_value(sgrp, k, v)

        fgrp = f.create_group("fields")
        fgrp.attrs["order"] = json.dumps([name for name, _ in fields])
        for name, value in fields:
            write_value(fgrp, name, value)

    logger.debug(f"wrote matrix record {type_tag} -> {path}")
    return path


def read_metadata_record(root: str) -> Tuple[str, Tuple[Any, ...], Dict[str, Any]]:
    """
    Read a matrix record.

    Returns
    -------
    type_tag : str
        Registered matrix type name
    fields : tuple
        Constructor fields in declaration order
    storage : dict
        Storage mechanism descriptor (always has a 'type' key)
    """
    path = os.path.join(root, RECORD_FILENAME)
    if not _path_exists(path):
        raise FileNotFoundError(f"No matrix record at {path}")
    with _open(path, "r") as f:
        type_tag = read_value(f, "type")
        sgrp = f["storage"]
        storage = {k: read_value(sgrp, k) for k in _names(sgrp)}
        fgrp = f["fields"]
        order = json.loads(fgrp.attrs["order"])
        fields = tuple(read_value(fgrp, name) for name in order)
    return type_tag, fields, storage


def record_summary(root: str) -> Dict[str, Any]:
    """Top-level record attrs, for `driftblock info`."""
    path = os.path.join(root, RECORD_FILENAME)
    with _open(path, "r") as f:
        return {k: read_value(f, k) for k in _names(f) if k in f.attrs}

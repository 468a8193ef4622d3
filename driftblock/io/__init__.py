"""
DRIFTBLOCK I/O Module.

HDF5 block containers and the matrix metadata record.
"""

from .hdf5 import (
    RECORD_FILENAME,
    RECORD_VERSION,
    block_key,
    read_dataset,
    read_datasets,
    read_metadata_record,
    record_summary,
    register_hdf5_kind,
    write_dataset,
    write_metadata_record,
)

#!/usr/bin/env python3
"""
DRIFTBLOCK Command-Line Interface.

Commands:
- driftblock run config.yaml      : Create and compute a transfer matrix
- driftblock info <matrix path>   : Show matrix information
- driftblock version              : Show DRIFTBLOCK version
"""

import sys
import argparse
from pathlib import Path


def cmd_run(args):
    """Create and compute a transfer matrix from YAML config."""
    from .flow import run_pipeline

    try:
        run_pipeline(args.config, use_rich=not args.plain)
    except Exception as e:
        print(f"\n{'='*60}", file=sys.stderr)
        print("✗ Transfer matrix computation failed", file=sys.stderr)
        print(f"{'='*60}", file=sys.stderr)
        print(f"Error: {e}", file=sys.stderr)

        if args.verbose:
            import traceback
            traceback.print_exc()

        sys.exit(1)


def cmd_info(args):
    """Show matrix information."""
    from .io.hdf5 import record_summary
    from .matrices import load
    from .core.logging_utils import format_hierarchy_table

    matrix_path = Path(args.matrix)

    if not matrix_path.is_dir():
        print(f"Error: Matrix directory not found: {matrix_path}", file=sys.stderr)
        sys.exit(1)

    try:
        summary = record_summary(str(matrix_path))
        matrix = load(str(matrix_path))
    except Exception as e:
        print(f"Error reading matrix: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    print(f"\nDRIFTBLOCK Matrix Info")
    print(f"{'='*60}")
    print(f"Path:            {matrix_path}")
    print(f"{'='*60}\n")

    print(f"Type:            {summary.get('type')}")
    print(f"Record version:  {summary.get('version')}")
    print(f"Created:         {summary.get('created_at')}")
    print(f"Written by:      driftblock {summary.get('driftblock_version')}")
    print(f"Storage:         {matrix.storage!r}")
    print(f"Index domain:    {matrix.dims()} ({matrix.nblocks} blocks)")

    for name, value in matrix.named_fields():
        print(f"  {name:<14} {value!r}")

    hierarchy = getattr(matrix.storage, "hierarchy", None)
    if hierarchy is not None:
        print(format_hierarchy_table(hierarchy))
    print()


def cmd_version(args):
    """Show DRIFTBLOCK version."""
    from . import __version__

    print(f"DRIFTBLOCK version {__version__}")
    print("Block-matrix storage and distributed transfer matrix computation")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='driftblock',
        description='DRIFTBLOCK - Out-of-core transfer matrices for drift-scan interferometers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  driftblock run transfer.yaml       Create and compute a transfer matrix
  driftblock info transfer/          Show matrix information
  driftblock version                 Show DRIFTBLOCK version
        """
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output (show tracebacks on errors)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # driftblock run
    parser_run = subparsers.add_parser(
        'run',
        help='Create and compute a transfer matrix from YAML config',
        description='Run DRIFTBLOCK from a YAML configuration file'
    )
    parser_run.add_argument('config', type=str, help='Path to YAML configuration file')
    parser_run.add_argument('--plain', action='store_true', help='Plain console logging (no rich)')
    parser_run.set_defaults(func=cmd_run)

    # driftblock info
    parser_info = subparsers.add_parser(
        'info',
        help='Show matrix information',
        description='Display information about a stored block matrix'
    )
    parser_info.add_argument('matrix', type=str, help='Matrix root directory')
    parser_info.set_defaults(func=cmd_info)

    # driftblock version
    parser_version = subparsers.add_parser(
        'version',
        help='Show DRIFTBLOCK version',
        description='Display DRIFTBLOCK version information'
    )
    parser_version.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == '__main__':
    main()

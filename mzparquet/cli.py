"""Command-line interface for mzparquet.

Converts a Thermo .raw acquisition into a flat, one-row-per-peak parquet file.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml

from . import __version__
from .pipeline import ConversionConfig, convert_raw_file, default_output_path
from .sink import SinkWriteError
from .summary import summarize_output
from .thermo import RawFileOpenError

logger = logging.getLogger(__name__)

INPUT_SUFFIX = ".raw"


class InputFileError(ValueError):
    """The input path is missing or not a convertible file."""


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def load_config(config_path: Path | None) -> dict:
    """Load configuration from YAML file or return defaults."""
    defaults = {
        'output': {
            'chunk_size': 1_048_576,
            'compression': 'zstd',
            'compression_level': 1,
            'intensity_precision': 'float',
            'charge_precision': 'integer',
        },
        'conversion': {
            'progress_step': 0.1,
            'instrument_index': 1,
        },
    }

    if config_path and config_path.exists():
        with open(config_path) as f:
            user_config = yaml.safe_load(f) or {}
        # Deep merge user config over defaults
        defaults = _deep_merge(defaults, user_config)

    return defaults


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override dict into base dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def build_conversion_config(config: dict, args: argparse.Namespace | None = None) -> ConversionConfig:
    """Turn a config dict (plus CLI overrides) into a validated ConversionConfig."""
    output = config.get('output', {})
    conversion = config.get('conversion', {})

    conversion_config = ConversionConfig(
        chunk_size=int(output.get('chunk_size', 1_048_576)),
        compression=output.get('compression', 'zstd'),
        compression_level=output.get('compression_level', 1),
        intensity_precision=output.get('intensity_precision', 'float'),
        charge_precision=output.get('charge_precision', 'integer'),
        progress_step=float(conversion.get('progress_step', 0.1)),
        instrument_index=int(conversion.get('instrument_index', 1)),
    )

    if args is not None:
        if getattr(args, 'chunk_size', None) is not None:
            conversion_config.chunk_size = args.chunk_size
        if getattr(args, 'intensity_precision', None) is not None:
            conversion_config.intensity_precision = args.intensity_precision
        if getattr(args, 'charge_precision', None) is not None:
            conversion_config.charge_precision = args.charge_precision

    conversion_config.validate()
    return conversion_config


def check_input(path: Path) -> Path:
    """Make sure ``path`` is an existing .raw file.

    Raises:
        InputFileError: If the file is missing or has the wrong extension

    """
    if path.suffix.lower() != INPUT_SUFFIX:
        raise InputFileError(f"Expected a {INPUT_SUFFIX} file, got: {path}")
    if not path.exists():
        raise InputFileError(f"Input file not found: {path}")
    if path.is_dir():
        raise InputFileError(f"Input is a directory, not a file: {path}")
    return path


def cmd_convert(args: argparse.Namespace) -> int:
    """Convert one raw file."""
    input_path = check_input(Path(args.input))
    output_path = Path(args.output) if args.output else default_output_path(input_path)

    config = build_conversion_config(
        load_config(Path(args.config) if args.config else None),
        args,
    )

    result = convert_raw_file(input_path, output_path, config)

    if args.summary:
        logger.info(str(summarize_output(result.output_path)))

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog='mzparquet',
        description='Convert a Thermo .raw file into a flat parquet file with one row per peak.\n\n'
                    'Usage:\n'
                    '  mzparquet run.raw            # writes run.mzparquet',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('input', help='Input Thermo .raw file')
    parser.add_argument('-o', '--output', help='Output path (default: input with .mzparquet suffix)')
    parser.add_argument('-c', '--config', help='Configuration YAML file')
    parser.add_argument('--chunk-size', type=int, help='Rows per written chunk')
    parser.add_argument('--intensity-precision', choices=['float', 'integer'],
                        help='Store intensities as float32 or rounded uint32')
    parser.add_argument('--charge-precision', choices=['integer', 'float'],
                        help='Store precursor charge as uint32 or float32')
    parser.add_argument('--summary', action='store_true',
                        help='Log a summary of the written file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        return cmd_convert(args)
    except InputFileError as e:
        logger.error(str(e))
    except RawFileOpenError as e:
        logger.error(f"Could not open input: {e}")
    except SinkWriteError as e:
        logger.error(str(e))
    except Exception as e:  # .NET exceptions from the raw reader included
        logger.error(f"Conversion failed: {e}", exc_info=args.verbose)
    return 1


if __name__ == '__main__':
    sys.exit(main())

"""
Command-line front end.

    pptx-slim deck.pptx                      Optimize with the balanced preset
    pptx-slim deck.pptx --preset aggressive  Smaller output, lower image quality
    pptx-slim deck.pptx --dry-run            Report savings without writing
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from . import __version__
from .config import DEFAULT_PRESET, PRESETS, FormatPolicy, OptimizeOptions
from .optimizer import OptimizationStats, default_output_path, optimize_pptx
from .validation import verify_presentation


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s'
    )


def format_bytes(num_bytes: int) -> str:
    """Format bytes into human-readable string (KB, MB, GB)."""
    if num_bytes == 0:
        return "0.0 MB"

    sign = '-' if num_bytes < 0 else ''
    num_bytes = abs(num_bytes)
    for unit in ['B', 'KB', 'MB', 'GB']:
        if num_bytes < 1024.0 or unit == 'GB':
            if unit == 'B':
                return f"{sign}{num_bytes} {unit}"
            return f"{sign}{num_bytes:.1f} {unit}"
        num_bytes /= 1024.0

    return f"{sign}{num_bytes:.1f} GB"


def print_summary(stats: OptimizationStats, output_path: Path | None) -> None:
    """Print a human-readable summary of a run."""
    title = "DRY RUN (nothing written)" if stats['dry_run'] else "OPTIMIZATION COMPLETE"
    print(f"\n{'='*60}")
    print(title)
    print(f"{'='*60}")
    print(f"  Input:            {stats['filename']}")
    if output_path is not None:
        print(f"  Output:           {output_path}")
    print(f"  Original size:    {format_bytes(stats['original_size'])}")
    print(f"  Optimized size:   {format_bytes(stats['compressed_size'])}")
    print(f"  Saved:            {format_bytes(stats['bytes_saved'])} ({stats['percent_saved']:.1f}%)")
    print()
    print(f"  Hidden slides removed:   {stats['hidden_slides_removed']}")
    print(f"  Unused layouts removed:  {stats['layouts_removed']}")
    print(f"  Unused masters removed:  {stats['masters_removed']}")
    print(f"  Unused media removed:    {stats['media_removed']} ({format_bytes(stats['unused_media_bytes'])})")
    print(f"  Images recompressed:     {stats['media_compressed']} of {stats['media_files_found']} "
          f"({format_bytes(stats['media_bytes_saved'])} saved)")
    if stats['media_failed']:
        print(f"  Images left unchanged after errors: {stats['media_failed']}")

    if stats['warnings']:
        print("\nWarnings:")
        for warning in stats['warnings']:
            print(f"  - {warning}")
    print()


def write_json_output(stats: OptimizationStats, output_path: str) -> None:
    """
    Write run statistics to a JSON file.

    Raises:
        IOError: If file write fails
    """
    try:
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(stats, f, indent=2, ensure_ascii=False)
        logging.info(f"JSON output written to: {output_path}")
    except OSError as e:
        raise IOError(f"failed to write output file {output_path}: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pptx-slim',
        description='Shrink PowerPoint files by removing hidden slides and unused '
                    'layouts, masters and media, and by recompressing images.',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        'input_path',
        help='Path to the .pptx file to optimize'
    )

    parser.add_argument(
        '-o', '--output',
        metavar='PATH',
        help='Output path (default: <name>_compressed.pptx next to the input)'
    )

    parser.add_argument(
        '--preset',
        choices=sorted(PRESETS),
        default=DEFAULT_PRESET,
        help=f'Image quality preset (default: {DEFAULT_PRESET})'
    )

    parser.add_argument(
        '--quality',
        type=int,
        metavar='N',
        help='Image quality 1-100, overrides the preset'
    )

    parser.add_argument(
        '--max-dimension',
        type=int,
        metavar='PX',
        help='Longest image side in pixels, overrides the preset'
    )

    parser.add_argument(
        '--format-policy',
        choices=[policy.value for policy in FormatPolicy],
        default=FormatPolicy.PRESERVE.value,
        help='preserve: keep each image format; rename: allow format changes and rename parts; '
             'in_place: allow format changes under the old name (default: preserve)'
    )

    parser.add_argument(
        '--batch-size',
        type=int,
        metavar='N',
        help='Number of images compressed concurrently'
    )

    parser.add_argument(
        '--keep-hidden-slides',
        action='store_true',
        help='Do not remove hidden slides'
    )

    parser.add_argument(
        '--no-prune',
        action='store_true',
        help='Do not remove unused layouts, masters and media'
    )

    parser.add_argument(
        '--no-images',
        action='store_true',
        help='Do not recompress images'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Report what would change without writing a file'
    )

    parser.add_argument(
        '--verify',
        action='store_true',
        help='Re-open the result with python-pptx before writing it'
    )

    parser.add_argument(
        '--output-json',
        metavar='PATH',
        help='Write run statistics as JSON to the specified path'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose debug logging'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point. Returns exit code."""
    argv = sys.argv[1:] if argv is None else argv

    # Show description if no arguments provided
    if not argv:
        print("pptx-slim: PowerPoint size reducer")
        print("=" * 35)
        print("\nRemoves hidden slides, unused layouts, masters and media,")
        print("and recompresses embedded images.")
        print("\nUsage:")
        print("  pptx-slim <file.pptx>                        Optimize (balanced preset)")
        print("  pptx-slim <file.pptx> -o small.pptx          Choose the output path")
        print("  pptx-slim <file.pptx> --preset aggressive    Smaller images")
        print("  pptx-slim <file.pptx> --dry-run              Show savings only")
        print("\nRun with --help for all options.")
        return 0

    args = build_parser().parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)

    try:
        options = OptimizeOptions.from_preset(
            args.preset,
            quality=args.quality,
            max_dimension=args.max_dimension,
            format_policy=args.format_policy,
            batch_size=args.batch_size,
            remove_hidden_slides=not args.keep_hidden_slides,
            remove_unused=not args.no_prune,
            compress_images=not args.no_images,
        )

        input_path = Path(args.input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"File not found: {input_path}")

        data = input_path.read_bytes()
        output, stats = asyncio.run(optimize_pptx(data, input_path.name, options, dry_run=args.dry_run))

        if args.verify:
            slide_count = verify_presentation(output)
            logging.info(f"Verified: output opens with {slide_count} slide(s)")

        output_path = None
        if not args.dry_run:
            output_path = Path(args.output) if args.output else default_output_path(input_path)
            output_path.write_bytes(output)

        print_summary(stats, output_path)

        # Optional JSON output
        if args.output_json:
            write_json_output(stats, args.output_json)

        return 0

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except IOError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: unexpected error: {e}", file=sys.stderr)
        logging.exception("Unexpected error occurred")
        return 1


if __name__ == "__main__":
    sys.exit(main())

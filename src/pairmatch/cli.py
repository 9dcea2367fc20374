"""Command-line interface for the pairmatch pipeline."""

import argparse
import logging
import sys
from pathlib import Path

import yaml

from pairmatch.config import MatchingConfig, MatchingMethod
from pairmatch.errors import PairMatchError


def _configure_logging(verbose: bool = False) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Silence noisy third-party loggers
    for name in ("matplotlib", "PIL"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_config(args: argparse.Namespace) -> MatchingConfig:
    """Build a MatchingConfig from an optional YAML file and CLI overrides.

    Args:
        args: Parsed ``run`` or ``init`` arguments.

    Returns:
        Configuration with command-line values taking precedence.
    """
    config_path = getattr(args, "config", None)
    if config_path is not None:
        config = MatchingConfig.from_yaml(config_path)
    else:
        config = MatchingConfig()

    overrides = {
        "scene_path": args.input_file,
        "output_path": args.output_file,
        "pair_list_path": args.pair_list,
        "features_dir": args.features_dir,
        "ratio": args.ratio,
        "method": args.nearest_matching_method,
        "cache_size": args.cache_size,
        "num_workers": args.num_workers,
    }
    data = config.model_dump()
    data.update({key: value for key, value in overrides.items() if value is not None})
    if getattr(args, "force", False):
        data["force"] = True
    if getattr(args, "quiet", False):
        data["quiet"] = True
    if getattr(args, "no_graph", False):
        data["export_graph"] = False

    return MatchingConfig.model_validate(data)


def run_command(args: argparse.Namespace) -> None:
    """Execute a matching run.

    Args:
        args: Parsed ``run`` arguments.
    """
    # 1. Configure logging
    _configure_logging(args.verbose)

    # 2. Load config
    if args.config is not None and not args.config.exists():
        print(f"Error: Config file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    try:
        config = build_config(args)
        config.check_required()
    except (PairMatchError, ValueError, yaml.YAMLError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logging.getLogger(__name__).info(
        "Matching with ratio=%.2f, method=%s, force=%s, cache_size=%s",
        config.ratio,
        config.method.value,
        config.force,
        "unlimited" if config.cache_size == 0 else config.cache_size,
    )

    # 3. Run pipeline
    from pairmatch.pipeline import run_pipeline

    try:
        result = run_pipeline(config)
    except PairMatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Error: Cannot access match file: {e}", file=sys.stderr)
        sys.exit(1)

    # 4. Print summary
    status = "reused" if result.reused else "computed"
    print(
        f"\nMatches {status}: {result.summary['pairs']} pair(s), "
        f"{result.summary['nonempty_pairs']} with matches, "
        f"{result.summary['correspondences']} putative match(es)"
    )
    if result.failed_pairs:
        print(f"{len(result.failed_pairs)} pair(s) could not be matched (stored empty)")
    print(f"Output: {config.output_path}\n")


def init_command(args: argparse.Namespace) -> None:
    """Write a configuration YAML from command-line values.

    Args:
        args: Parsed ``init`` arguments.
    """
    try:
        config = build_config(args)
    except (PairMatchError, ValueError, yaml.YAMLError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    config.to_yaml(args.output_config)
    print(f"[OK] Configuration saved to: {args.output_config}")


def pairs_command(args: argparse.Namespace) -> None:
    """Generate a pair list for the views of a scene.

    Args:
        args: Parsed ``pairs`` arguments.
    """
    _configure_logging(args.verbose)

    from pairmatch.pairs import contiguous_pairs, exhaustive_pairs, save_pairs
    from pairmatch.scene import load_scene

    try:
        catalog = load_scene(args.scene)
    except PairMatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.mode == "contiguous":
        if args.overlap < 1:
            print("Error: --overlap must be >= 1", file=sys.stderr)
            sys.exit(1)
        pairs = contiguous_pairs(catalog.view_ids, args.overlap)
    else:
        pairs = exhaustive_pairs(catalog.view_ids)

    save_pairs(pairs, args.output)
    print(f"[OK] Wrote {len(pairs)} pair(s) to: {args.output}")


def export_graph_command(args: argparse.Namespace) -> None:
    """Rebuild the match graph diagnostics from an existing match file.

    Args:
        args: Parsed ``export-graph`` arguments.
    """
    _configure_logging(args.verbose)

    from pairmatch.graph import build_match_graph, export_diagnostics
    from pairmatch.scene import load_scene
    from pairmatch.store import load_matches, validate_matches

    try:
        catalog = load_scene(args.scene)
        matches = load_matches(args.matches)
        validate_matches(matches, catalog.view_ids)
    except (PairMatchError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output_dir = args.output_dir if args.output_dir is not None else args.matches.parent
    graph = build_match_graph(catalog.view_ids, matches)
    written = export_diagnostics(graph, output_dir)

    for name, path in written.items():
        if path is None:
            print(f"[WARN] {name} export failed", file=sys.stderr)
        else:
            print(f"[OK] {name}: {path}")


def _add_matching_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-i",
        "--input-file",
        type=str,
        default=None,
        help="Scene description file (views and image sizes)",
    )
    parser.add_argument(
        "-o",
        "--output-file",
        type=str,
        default=None,
        help="Output match file (.txt or .pt)",
    )
    parser.add_argument(
        "-p",
        "--pair-list",
        type=str,
        default=None,
        help="Pair list file",
    )
    parser.add_argument(
        "--features-dir",
        type=str,
        default=None,
        help="Directory of descriptor files (default: folder of the output file)",
    )
    parser.add_argument(
        "-r",
        "--ratio",
        type=float,
        default=None,
        help="Distance ratio to discard non meaningful matches (default: 0.8)",
    )
    parser.add_argument(
        "-n",
        "--nearest-matching-method",
        type=str,
        default=None,
        help=(
            "Nearest neighbor method: "
            + ", ".join(m.value for m in MatchingMethod)
            + " (default: AUTO)"
        ),
    )
    parser.add_argument(
        "-c",
        "--cache-size",
        type=int,
        default=None,
        help="Keep at most this many region sets in memory (default: 0 = all)",
    )
    parser.add_argument(
        "-j",
        "--num-workers",
        type=int,
        default=None,
        help="Number of worker threads (default: 4)",
    )


def main() -> None:
    """Main entry point for the pairmatch CLI."""
    parser = argparse.ArgumentParser(
        prog="pairmatch",
        description="Putative feature matching across image pairs.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Compute putative matches (or reuse an existing match file)",
    )
    run_parser.add_argument(
        "config",
        type=Path,
        nargs="?",
        default=None,
        help="Optional config YAML file; command-line values override it",
    )
    _add_matching_arguments(run_parser)
    run_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Recompute matches even if the output file exists",
    )
    run_parser.add_argument(
        "--no-graph",
        action="store_true",
        help="Skip the match graph diagnostics",
    )
    run_parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress progress bars",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write a config YAML from command-line values",
    )
    _add_matching_arguments(init_parser)
    init_parser.add_argument(
        "--config",
        dest="output_config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to output config YAML file (default: config.yaml)",
    )

    # pairs subcommand
    pairs_parser = subparsers.add_parser(
        "pairs",
        help="Generate a pair list for a scene",
    )
    pairs_parser.add_argument("scene", type=Path, help="Scene description file")
    pairs_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        required=True,
        help="Output pair list file",
    )
    pairs_parser.add_argument(
        "--mode",
        type=str,
        choices=["exhaustive", "contiguous"],
        default="exhaustive",
        help="Pair generation mode (default: exhaustive)",
    )
    pairs_parser.add_argument(
        "--overlap",
        type=int,
        default=10,
        help="Following views paired with each view in contiguous mode (default: 10)",
    )
    pairs_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # export-graph subcommand
    graph_parser = subparsers.add_parser(
        "export-graph",
        help="Write adjacency matrix and graph description of a match file",
    )
    graph_parser.add_argument("scene", type=Path, help="Scene description file")
    graph_parser.add_argument("matches", type=Path, help="Match file (.txt or .pt)")
    graph_parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory (defaults to the folder of the match file)",
    )
    graph_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Dispatch
    if args.command == "run":
        run_command(args)
    elif args.command == "init":
        init_command(args)
    elif args.command == "pairs":
        pairs_command(args)
    elif args.command == "export-graph":
        export_graph_command(args)
    else:
        parser.print_help()
        sys.exit(1)

#!/usr/bin/env python3
"""
Command line interface for the ksRepo pipeline.
"""

import argparse
import logging
import sys
from pathlib import Path
import tomli
from tomli_w import dump
from .config import RESAMPLING_MODES
from .pipeline import KsRepoPipeline
from .utils import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Rank compounds for drug repositioning with the ksRepo method"
    )

    parser.add_argument(
        "config_file",
        type=str,
        help="Path to TOML configuration file"
    )

    input_group = parser.add_argument_group("Input file overrides")
    input_group.add_argument(
        "--gene-list",
        type=str,
        help="Override ranked gene list file path"
    )
    input_group.add_argument(
        "--interactions",
        type=str,
        help="Override compound-gene interaction file path"
    )

    output_group = parser.add_argument_group("Output configuration overrides")
    output_group.add_argument(
        "--output-dir",
        type=str,
        help="Override output directory"
    )

    analysis_group = parser.add_argument_group("Analysis parameter overrides")
    analysis_group.add_argument(
        "--resamples",
        type=int,
        help="Override number of resamples per compound"
    )
    analysis_group.add_argument(
        "--mode",
        choices=RESAMPLING_MODES,
        help="Override resampling mode"
    )
    analysis_group.add_argument(
        "--seed",
        type=int,
        help="Override random seed"
    )
    analysis_group.add_argument(
        "--fdr-method",
        type=str,
        help="Override multiple-testing correction method"
    )
    analysis_group.add_argument(
        "--min-genes",
        type=int,
        help="Override minimum number of listed genes per compound"
    )
    analysis_group.add_argument(
        "--num-threads",
        type=int,
        help="Override number of worker processes"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug messages"
    )

    return parser.parse_args(argv)


def update_config(config: dict, args: argparse.Namespace):
    """Update configuration with command line overrides."""
    config.setdefault('input', {})
    config.setdefault('output', {})
    config.setdefault('analysis', {})

    if args.gene_list:
        config['input']['gene_list_file'] = args.gene_list
    if args.interactions:
        config['input']['interactions_file'] = args.interactions

    if args.output_dir:
        config['output']['directory'] = args.output_dir

    if args.resamples is not None:
        config['analysis']['resamples'] = args.resamples
    if args.mode:
        config['analysis']['mode'] = args.mode
    if args.seed is not None:
        config['analysis']['seed'] = args.seed
    if args.fdr_method:
        config['analysis']['fdr_method'] = args.fdr_method
    if args.min_genes is not None:
        config['analysis']['min_genes'] = args.min_genes
    if args.num_threads is not None:
        config['analysis']['num_threads'] = args.num_threads

    return config


def main(argv=None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        with open(args.config_file, 'rb') as f:
            config = tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        print(f"Error loading configuration file: {str(e)}")
        sys.exit(1)

    config = update_config(config, args)

    # Set up logging first, before any pipeline operations
    output_dir = Path(config['output'].get('directory', 'results'))
    setup_logging(output_dir / 'logs', level=logging.DEBUG if args.verbose else logging.INFO)

    logging.info("Starting ksRepo pipeline")
    logging.info(f"Using configuration file: {args.config_file}")

    # Save updated config to a temporary file
    temp_config_path = Path(args.config_file).parent / "temp_config.toml"
    with open(temp_config_path, 'wb') as f:
        dump(config, f)

    try:
        pipeline = KsRepoPipeline(str(temp_config_path))
        pipeline.run()
        logging.info("Pipeline execution completed successfully")
    except Exception as e:
        logging.error(f"Pipeline execution failed: {str(e)}")
        sys.exit(1)
    finally:
        temp_config_path.unlink()


if __name__ == "__main__":
    main()

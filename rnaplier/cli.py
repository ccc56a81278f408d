"""
Command line entry point for the rnaplier pipeline.

Usage:
    rnaplier CONFIG [--skip-qc] [--skip-plots]
"""

import argparse
import sys

from .exceptions import PipelineError
from .pipeline import run_pipeline


def main(argv=None):
    """Run the complete pipeline from a YAML config."""

    parser = argparse.ArgumentParser(
        prog="rnaplier",
        description="Gene-level collapsing and PLIER analysis of RNA-seq data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run full pipeline
    rnaplier config/experiment.yaml

    # Skip QC plots and LV plots
    rnaplier config/experiment.yaml --skip-qc --skip-plots
        """
    )

    parser.add_argument(
        "config",
        help="Path to YAML configuration file"
    )

    parser.add_argument(
        "--skip-qc",
        action="store_true",
        help="Skip QC plot generation"
    )

    parser.add_argument(
        "--skip-plots",
        action="store_true",
        help="Skip latent variable plot generation"
    )

    args = parser.parse_args(argv)

    try:
        data = run_pipeline(args.config, skip_qc=args.skip_qc, skip_plots=args.skip_plots)
    except PipelineError as e:
        print(f"ERROR: {e.describe()}", file=sys.stderr)
        return 1

    print("\nPipeline execution completed successfully!")
    print(f"  Genes: {data['metadata']['n_genes']}")
    print(f"  Latent variables: {data['plier_params']['k']}")
    print(f"  Results: {data['output_dirs']['base']}")

    return 0


if __name__ == "__main__":
    sys.exit(main())

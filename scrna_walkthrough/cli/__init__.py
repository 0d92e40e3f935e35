"""Command-line interface for scrna-walkthrough.

Example Usage
-------------
    # From command line:
    scrna-walkthrough --help
    scrna-walkthrough stages
    scrna-walkthrough run --config walkthrough.yaml
    scrna-walkthrough cluster --input scaled.h5ad --out out/ --resolution 0.4 --resolution 0.8
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]

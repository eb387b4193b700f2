"""
ScanRestore - Python package for restoring scanned document pages

This package straightens, binarizes and cleans scanned pages: deskew,
black-and-white conversion, scanner border removal, despeckle, punch-hole
removal, scanner stripe removal, contrast enhancement and splitting of
two-page book spreads.
"""

__version__ = "1.0.0"
__license__ = "GPL-3.0"


def main() -> int:
    """Main entry point; runs the command line interface.

    Returns:
        The process exit code.
    """
    from scanrestore.cli import main as cli_main

    return cli_main()


__all__ = ["main", "__version__", "__license__"]

"""Main entry point when executing atsgate as a package.

This allows running the package using python -m atsgate.
"""

from atsgate.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()

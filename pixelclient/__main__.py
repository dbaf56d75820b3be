"""Main entry point when executing pixelclient as a package.

This allows running the package using python -m pixelclient.
"""

from pixelclient.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()

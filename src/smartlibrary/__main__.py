"""Main entry point for ``python -m smartlibrary``."""

from smartlibrary.cli import main

if __name__ == "__main__":
    main()

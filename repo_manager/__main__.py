"""Entry point for running the repository manager as a module."""

from .server import main

if __name__ == "__main__":
    main()

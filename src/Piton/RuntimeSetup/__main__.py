"""Allow ``python -m Piton.RuntimeSetup`` to run the bootstrapper CLI."""

from .cli import app

if __name__ == "__main__":
    app()

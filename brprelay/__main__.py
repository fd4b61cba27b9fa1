"""Entry point for running brprelay as a module: python -m brprelay."""

from brprelay.cli.commands import app

if __name__ == "__main__":
    app()

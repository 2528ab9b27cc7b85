"""Entry point for ``python -m hrdesk``."""

from hrdesk.cli.commands import app

if __name__ == "__main__":
    app()

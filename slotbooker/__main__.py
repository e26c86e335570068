"""Allow ``python -m slotbooker``."""

from .cli.app import app

if __name__ == "__main__":
    app()

"""Allow ``python -m nixdesk``."""

from nixdesk.main import cli

if __name__ == "__main__":
    cli()

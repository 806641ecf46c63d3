"""Console script: runs the click CLI, or says how to install it."""

import sys

CLI_EXTRA_HINT = (
    "shadowsync: the command line needs click.\n"
    "Install it with:  pip install 'shadowsync[cli]'"
)


def main():
    try:
        import click  # noqa: F401
    except ModuleNotFoundError:
        sys.exit(CLI_EXTRA_HINT)
    from .cli import main as cli_main
    cli_main(prog_name="shadowsync")

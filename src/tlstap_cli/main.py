"""tlstap command group."""
import logging

import click

from tlstap import __version__
from .replay import replay

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(__version__, prog_name="tlstap")
@click.option("--log-level", "log_level", envvar="TLSTAP_LOG_LEVEL",
              type=click.Choice(LOG_LEVELS, case_sensitive=False),
              default="WARNING", show_default=True,
              help="Logging verbosity (stderr)")
def cli(log_level: str):
    """Rebuild TLS plaintext event streams into transcripts or pcap files."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


cli.add_command(replay)


if __name__ == "__main__":
    cli()

"""CLI command for replaying recorded event dumps."""
import json
import logging
from typing import Optional, Tuple

import click

from tlstap.capture import EventProcessor, ProcessorConfig, open_event_source
from tlstap.exceptions import TapError
from tlstap.pcap_writer import MAX_SEGMENT_SIZE, OutputMode

logger = logging.getLogger(__name__)

_MODES = {
    "text": OutputMode.TRANSCRIPT,
    "pcap": OutputMode.CAPTURE,
}


@click.command()
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.option("--mode", "mode", type=click.Choice(sorted(_MODES)), default="text",
              show_default=True, envvar="TLSTAP_MODE",
              help="text: per-connection transcripts, pcap: synthetic capture file")
@click.option("--output", "output", required=True, envvar="TLSTAP_OUTPUT",
              type=click.Path(),
              help="Transcript directory (text) or .pcap file (pcap)")
@click.option("--idle-timeout", "idle_timeout", type=float, default=60.0, show_default=True,
              envvar="TLSTAP_IDLE_TIMEOUT",
              help="Seconds of stream time before an idle connection is flushed")
@click.option("--queue-capacity", "queue_capacity", type=int, default=1024, show_default=True,
              envvar="TLSTAP_QUEUE_CAPACITY", help="Event queue size")
@click.option("--continuation-limit", "continuation_limit", type=int, default=32,
              show_default=True, envvar="TLSTAP_CONTINUATION_LIMIT",
              help="Full-buffer fragments joined before a unit is force-emitted")
@click.option("--segment-size", "segment_size", type=int, default=MAX_SEGMENT_SIZE,
              show_default=True, envvar="TLSTAP_SEGMENT_SIZE",
              help="Max TCP payload per synthesized packet (pcap mode)")
@click.option("--drain-timeout", "drain_timeout", type=float, default=60.0, show_default=True,
              envvar="TLSTAP_DRAIN_TIMEOUT", help="Seconds allowed for the final drain")
@click.option("--hex", "hex_dump", is_flag=True, default=False, envvar="TLSTAP_HEX",
              help="Hex-dump payloads in transcripts (text mode)")
@click.option("--pid", "pids", type=int, multiple=True,
              help="Only replay events of this pid (repeatable)")
@click.option("--comm", "comm", envvar="TLSTAP_COMM",
              help="Only replay events of this process name")
def replay(input_path: str,
           mode: str,
           output: str,
           idle_timeout: float,
           queue_capacity: int,
           continuation_limit: int,
           segment_size: int,
           drain_timeout: float,
           hex_dump: bool,
           pids: Tuple[int, ...],
           comm: Optional[str]):
    """
    Replay a recorded event dump (.bin raw records or .json lines).

    Example:
      tlstap replay events.bin --mode pcap --output tls.pcap
    """
    try:
        config = ProcessorConfig(
            destination=output,
            mode=_MODES[mode],
            idle_timeout=idle_timeout,
            queue_capacity=queue_capacity,
            continuation_limit=continuation_limit,
            segment_size=segment_size,
            hex_dump=hex_dump,
            # replay is a producer that can always wait for the serve loop
            write_timeout=drain_timeout,
            drain_timeout=drain_timeout,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    wanted = set(pids)
    processor = EventProcessor(config)
    processor.start()
    source_info = {}
    replay_error: Optional[Exception] = None
    try:
        with open_event_source(input_path) as source:
            for event in source:
                if wanted and event.pid not in wanted:
                    continue
                if comm and event.comm != comm:
                    continue
                processor.write(event)
            source_info = source.get_source_info()
    except (OSError, TapError) as e:
        replay_error = e
        logger.error("Replay of %s stopped: %s", input_path, e)

    try:
        processor.close()
    except TapError as e:
        raise click.ClickException(f"Output incomplete: {e}")
    if replay_error is not None:
        raise click.ClickException(str(replay_error))

    summary = {
        'input': source_info,
        'output': output,
        'mode': config.mode.value,
        'stats': processor.get_stats(),
    }
    click.echo(json.dumps(summary, indent=2, sort_keys=True))

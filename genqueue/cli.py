import json
import logging
import time

import click

from genqueue.db import init_db
from genqueue.log import configure_logging
from genqueue.services import build_services
from genqueue.settings import settings

logger = logging.getLogger(__name__)


def _services():
    configure_logging(settings.LOG_LEVEL)
    svc = build_services()
    init_db(svc.engine)
    return svc


@click.group()
def cli():
    """Queue worker for genqueue."""


@cli.command()
def drain():
    """Run one supervisor pass over both queues."""
    click.echo(json.dumps(_services().worker.drain()))


@cli.command()
def sweep():
    """Re-enqueue orphaned jobs and fail stuck ones."""
    click.echo(json.dumps(_services().sweeper.sweep()))


@cli.command()
@click.option("--interval", type=float, default=None, help="Seconds between passes (default WORKER_IDLE_SECONDS).")
@click.option("--sweep-every", type=int, default=12, show_default=True, help="Run the sweep every N passes.")
def run(interval, sweep_every):
    """Poll the queues forever; the fallback when wake-ups are lost."""
    svc = _services()
    interval = interval if interval is not None else settings.WORKER_IDLE_SECONDS
    passes = 0
    logger.info("Worker loop started (interval %.1fs)", interval)
    while True:
        passes += 1
        try:
            svc.worker.drain()
            if passes % sweep_every == 0:
                svc.sweeper.sweep()
        except Exception:
            # keep the loop alive across Redis/DB outages
            logger.exception("Worker pass %d failed", passes)
        time.sleep(interval)


if __name__ == "__main__":
    cli()

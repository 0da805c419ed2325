"""CLI entry point for the mailsync cache."""

import logging

import click
from dotenv import load_dotenv

from mailsync.config import Settings
from mailsync.service.engine import MailSyncEngine

logger = logging.getLogger(__name__)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Cached multi-provider inbox — browse, sync and purge commands."""
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    engine = MailSyncEngine.build(settings)
    if settings.user_email:
        engine.link_gmail(settings.user_email, settings.user_email)
    ctx.obj = engine
    ctx.call_on_close(engine.close)


# Import and register commands after cli is defined to avoid circular imports.
from mailsync.cli.commands import inbox, purge, show, sync  # noqa: E402

cli.add_command(inbox)
cli.add_command(show)
cli.add_command(sync)
cli.add_command(purge)

"""Click CLI group: the embed command.

    agent-embedder embed [ARCHIVE] --config embed.yaml [--remove-embedded-agents]

Exit codes: 0 success, 1 embedding failed, 2 invalid configuration.
"""

import json
from typing import Optional

import click
import structlog

from agent_embedder.config import ConfigError, get_settings, load_embed_config
from agent_embedder.embedder import embed_agents
from agent_embedder.logging import configure_logging
from agent_embedder.types import EmbedderError

EXIT_OK = 0
EXIT_EMBED_FAILED = 1
EXIT_CONFIG_ERROR = 2

log = structlog.get_logger(__name__)


def _pick(*values: Optional[bool]) -> bool:
    return next(v for v in values if v is not None)


@click.group()
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR.")
@click.option("--json-logs/--no-json-logs", default=None, help="Emit JSON log lines.")
def cli(log_level: Optional[str], json_logs: Optional[bool]) -> None:
    """Embed agents into an executable archive so they start automatically."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level, json_logs=_pick(json_logs, settings.json_logs))


@cli.command()
@click.argument("archive", required=False)
@click.option(
    "-c", "--config", "config_path",
    required=True,
    type=click.Path(dir_okay=False, path_type=str),
    help="YAML file listing agents and resolved artifacts.",
)
@click.option(
    "--remove-embedded-agents/--no-remove-embedded-agents",
    default=None,
    help="Delete nested agent archives after unpacking them.",
)
@click.option(
    "--prefer-external-agents/--no-prefer-external-agents",
    default=None,
    help="Unpack the on-disk agent archive when a nested copy exists too.",
)
@click.pass_context
def embed(
    ctx: click.Context,
    archive: Optional[str],
    config_path: str,
    remove_embedded_agents: Optional[bool],
    prefer_external_agents: Optional[bool],
) -> None:
    """Embed the configured agents into ARCHIVE (overrides 'archive' in the config)."""
    try:
        config = load_embed_config(config_path)
    except ConfigError as exc:
        log.error("invalid configuration", error=str(exc))
        ctx.exit(EXIT_CONFIG_ERROR)

    archive = archive or config.archive
    if not archive:
        log.error("no archive given", config=config_path)
        ctx.exit(EXIT_CONFIG_ERROR)

    settings = get_settings()
    try:
        result = embed_agents(
            archive,
            config.descriptors(),
            config.resolved_artifacts(),
            remove_embedded_agents=_pick(
                remove_embedded_agents, config.remove_embedded_agents, settings.remove_embedded_agents,
            ),
            prefer_external_agents=_pick(
                prefer_external_agents, config.prefer_external_agents, settings.prefer_external_agents,
            ),
        )
    except EmbedderError as exc:
        log.error("error while embedding agents", archive=archive, error=str(exc))
        ctx.exit(EXIT_EMBED_FAILED)

    click.echo(json.dumps(result.to_dict(), indent=2))


def main() -> None:
    cli(prog_name="agent-embedder")


if __name__ == "__main__":
    main()

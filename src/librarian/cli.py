"""Command line entry point for assembling context bundles."""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .assembler import ContextAssembler
from .config import options_from_config
from .docdex import DocdexClient, DocdexGateway
from .errors import DeepInvestigationError, PathOutsideWorkspaceError
from .models import LLMClient, ResponsesClient

APP_HELP = "Assemble LLM-ready context bundles from a docdex index."
DEFAULT_CONFIG_NAME = "librarian.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "docdex": {
        "base_url": "http://127.0.0.1:3210",
        "api_key_env": "DOCDEX_API_KEY",
        "repo_id": None,
        "timeout": 30,
    },
    "models": {
        "query_expansion": None,
    },
    "librarian": {
        "max_queries": 3,
        "max_hits_per_query": 3,
        "max_files": 8,
        "max_total_bytes": 40000,
        "token_budget": 120000,
        "read_strategy": "docdex",
        "serialization_mode": "bundle_text",
        "redact_secrets": False,
        "ignore_files_from": [".gitignore"],
    },
}

app = typer.Typer(help=APP_HELP)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk; a missing file yields an empty config."""
    if not config_path.exists():
        return {}

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level: {level}", param_hint="--log-level")
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_docdex_client(config: Dict[str, Any], workspace: Path) -> DocdexClient:
    docdex_cfg = config.get("docdex") or {}
    key_env = str(docdex_cfg.get("api_key_env") or "DOCDEX_API_KEY")
    return DocdexClient(
        str(docdex_cfg.get("base_url") or DEFAULT_CONFIG_TEMPLATE["docdex"]["base_url"]),
        repo_id=docdex_cfg.get("repo_id") or None,
        repo_root=workspace.as_posix(),
        api_key=os.getenv(key_env),
        timeout=float(docdex_cfg.get("timeout") or 30),
    )


def _build_expansion_client(config: Dict[str, Any]) -> Optional[LLMClient]:
    model_name = (config.get("models") or {}).get("query_expansion")
    if not model_name:
        return None
    return ResponsesClient(model=str(model_name))


@app.command()
def assemble(
    request: str = typer.Argument(..., help="Natural-language task description."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the librarian configuration file."),
    workspace: str = typer.Option(".", "--workspace", "-w", help="Workspace root the bundle is built for."),
    mode: Optional[str] = typer.Option(None, "--mode", help="Serialization mode: bundle_text or json."),
    deep: bool = typer.Option(False, "--deep", help="Fail fast when the index is unfit for a deep investigation."),
    prefer: List[str] = typer.Option(None, "--prefer", "-p", help="Preferred file (repeatable)."),
    focus: List[str] = typer.Option(None, "--focus", "-f", help="File forced into focus (repeatable)."),
    max_files: Optional[int] = typer.Option(None, "--max-files", help="Maximum number of selected files."),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
) -> None:
    """Assemble a context bundle for REQUEST and print it."""
    _configure_logging(log_level)
    config_data = load_config(Path(config))
    workspace_root = Path(workspace).resolve()
    if mode is not None and mode not in ("bundle_text", "json"):
        raise typer.BadParameter("Mode must be bundle_text or json.", param_hint="--mode")
    try:
        options = options_from_config(
            config_data,
            serialization_mode=mode,
            deep_mode=True if deep else None,
            max_files=max_files,
        )
    except (ValueError, TypeError) as error:
        typer.echo(f"Invalid librarian configuration: {error}")
        raise typer.Exit(code=1) from error

    assembler = ContextAssembler(
        _build_docdex_client(config_data, workspace_root),
        workspace_root,
        options,
        llm_client=_build_expansion_client(config_data),
    )
    try:
        bundle = assembler.assemble(request, preferred_files=prefer or (), force_focus_files=focus or ())
    except DeepInvestigationError as error:
        typer.echo("Deep investigation blocked:")
        for item in error.missing:
            typer.echo(f"- missing: {item}")
        for step in error.remediation:
            typer.echo(f"- remediation: {step}")
        raise typer.Exit(code=2) from error
    except PathOutsideWorkspaceError as error:
        raise typer.BadParameter(str(error)) from error

    typer.echo(bundle.serialized or "")


@app.command()
def health(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the librarian configuration file."),
    workspace: str = typer.Option(".", "--workspace", "-w", help="Workspace root."),
) -> None:
    """Report docdex health and index stats."""
    config_data = load_config(Path(config))
    gateway = DocdexGateway(_build_docdex_client(config_data, Path(workspace).resolve()))
    status = gateway.health()
    if not status.ok:
        typer.echo(f"docdex: unavailable ({status.error})")
        raise typer.Exit(code=1)
    typer.echo("docdex: ok")
    stats = gateway.stats()
    if stats.ok and stats.value is not None:
        typer.echo(json.dumps(stats.value.model_dump(), indent=2))
    else:
        typer.echo(f"stats: {stats.warning}")


@app.command("init-config")
def init_config(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Where to write the configuration file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(copy.deepcopy(DEFAULT_CONFIG_TEMPLATE), handle, sort_keys=False)
    typer.echo(f"Wrote {config_path}")


if __name__ == "__main__":
    app()

"""promptforge command line: manage keys and custom endpoints, ask many models."""

import asyncio
from typing import List, Optional

import typer

from . import PromptForge
from .config import Settings
from .errors import ConversationNotFoundError, LLMAdapterError
from .llm import Custom
from .log import setup_logging
from .models import CustomModel, ResponseStatus
from .vault import validate_api_key_format

app = typer.Typer(add_completion=False, help="promptforge: one prompt, many LLMs")
keys_app = typer.Typer(help="Manage encrypted API keys")
custom_app = typer.Typer(help="Manage custom OpenAI/Anthropic-compatible endpoints")
app.add_typer(keys_app, name="keys")
app.add_typer(custom_app, name="custom")


def _forge() -> PromptForge:
    return PromptForge.from_settings(Settings.from_env())


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    settings = Settings.from_env()
    setup_logging("DEBUG" if verbose else settings.log_level)


# --- keys ---
@keys_app.command("add")
def keys_add(
    provider: str,
    api_key: str = typer.Option(..., "--key", prompt=True, hide_input=True),
    name: str = typer.Option("", "--name"),
    validate: bool = typer.Option(
        False, "--validate", help="Check the key with a one-token call"
    ),
) -> None:
    """Encrypt and store an API key for PROVIDER."""
    forge = _forge()
    if not validate_api_key_format(provider, api_key):
        typer.secho(
            f"Warning: key does not look like a {provider} key",
            fg=typer.colors.YELLOW,
            err=True,
        )
    if validate:
        try:
            adapter = forge.adapters.get_adapter(provider)
        except LLMAdapterError as exc:
            _fail(f"Cannot validate: {exc.message}")
        if not asyncio.run(adapter.validate_api_key(api_key)):
            _fail(f"{provider} rejected the key; nothing stored")
    secret = forge.vault.store_api_key(provider, api_key, name=name or None)
    typer.echo(f"Stored key for {provider} ({secret.key_id})")


@keys_app.command("list")
def keys_list() -> None:
    """List stored keys, masked."""
    summaries = _forge().vault.get_all_api_keys()
    if not summaries:
        typer.echo("No API keys stored.")
        return
    for summary in summaries:
        last_used = "never"
        if summary.last_used:
            last_used = summary.last_used.isoformat(timespec="seconds")
        label = f" ({summary.name})" if summary.name else ""
        typer.echo(
            f"{summary.provider_name}{label}\t{summary.masked_key}"
            f"\tlast used: {last_used}"
        )


@keys_app.command("delete")
def keys_delete(provider: str) -> None:
    """Delete the stored key for PROVIDER."""
    if not _forge().vault.delete_api_key(provider):
        _fail(f"No key stored for {provider}")
    typer.echo(f"Deleted key for {provider}")


# --- custom endpoints ---
@custom_app.command("add")
def custom_add(
    name: str = typer.Argument(..., help="Upstream model name sent to the endpoint"),
    base_url: str = typer.Argument(...),
    provider_type: str = typer.Option("openai", "--type", help="openai or anthropic"),
    api_key: str = typer.Option(..., "--key", prompt=True, hide_input=True),
) -> None:
    """Register a custom endpoint and store its key."""
    if provider_type not in Custom.DELEGATES:
        _fail(f"Unsupported provider type: {provider_type}")
    forge = _forge()
    model = CustomModel(name=name, base_url=base_url, provider_type=provider_type)
    forge.store.save_custom_model(model)
    forge.vault.store_api_key(model.secret_name, api_key, name=name)
    typer.echo(f"Added {model.model_id}")


@custom_app.command("list")
def custom_list() -> None:
    """List custom endpoints."""
    models = _forge().store.list_custom_models()
    if not models:
        typer.echo("No custom models.")
        return
    for model in models:
        typer.echo(
            f"{model.model_id}\t{model.name}\t{model.provider_type}\t{model.base_url}"
        )


@custom_app.command("delete")
def custom_delete(model_id: str) -> None:
    """Delete a custom endpoint and its key."""
    forge = _forge()
    model_id = model_id.partition("custom:")[2] or model_id
    if not forge.store.delete_custom_model(model_id):
        _fail(f"No custom model {model_id}")
    forge.vault.delete_api_key(f"custom:{model_id}")
    typer.echo(f"Deleted custom:{model_id}")


# --- models ---
@app.command()
def models(provider: Optional[str] = typer.Argument(None)) -> None:
    """List models, for one provider or all of them."""
    forge = _forge()
    provider_ids = [provider] if provider else forge.adapters.provider_ids()
    for provider_id in provider_ids:
        if not forge.adapters.has_provider(provider_id):
            _fail(f"Unknown provider: {provider_id}")
        adapter = forge.adapters.get_adapter(provider_id)
        typer.secho(adapter.provider_name, bold=True)
        for info in adapter.get_supported_models():
            context = info.capabilities.context_length or "?"
            typer.echo(f"  {provider_id}:{info.id}\t{info.name}\tcontext={context}")


# --- ask ---
@app.command()
def ask(
    prompt: str,
    model: Optional[List[str]] = typer.Option(
        None, "--model", "-m", help="Target as provider:model; repeatable"
    ),
    system: str = typer.Option("", "--system", help="System prompt"),
    stream: bool = typer.Option(True, "--stream/--no-stream"),
    continue_id: str = typer.Option(
        "",
        "--continue",
        help="Conversation id to continue; without --model every target continues",
    ),
) -> None:
    """Send PROMPT to every --model and print the answers side by side."""
    orchestrator = _forge().orchestrator
    model = model or []
    try:
        if continue_id:
            entry, latest = asyncio.run(
                _continue(orchestrator, continue_id, prompt, model, stream)
            )
        else:
            entry = asyncio.run(
                orchestrator.submit_prompt(
                    prompt, [], model, stream=stream, system_prompt=system or None
                )
            )
            latest = entry.responses
    except (ConversationNotFoundError, ValueError) as exc:
        _fail(str(exc))

    typer.echo(f"conversation {entry.id}")
    for record in latest:
        duration = f"{record.duration:.2f}s" if record.duration is not None else "-"
        typer.secho(
            f"== {record.target_key} [{record.status.value}, {duration}]", bold=True
        )
        if record.status is ResponseStatus.SUCCESS:
            typer.echo(record.response)
        else:
            typer.secho(f"{record.error_code}: {record.error}", fg=typer.colors.RED)
    if all(r.status is not ResponseStatus.SUCCESS for r in latest):
        raise typer.Exit(code=1)


async def _continue(orchestrator, conversation_id, message, models, stream):
    """Continues the named targets, or every target of the entry when none are named."""
    known = orchestrator.store.load_conversation(conversation_id)
    seen = {r.id for r in known.responses} if known else set()
    if not models:
        entry = await orchestrator.broadcast(conversation_id, message, stream=stream)
    else:
        targets = orchestrator.resolve_targets([], models)
        if not targets:
            raise ValueError("Select at least one model")
        entries = await asyncio.gather(
            *(
                orchestrator.send_message(conversation_id, target, message, stream)
                for target in targets
            )
        )
        entry = entries[0]
    return entry, [r for r in entry.responses if r.id not in seen]


@app.command()
def history(limit: int = typer.Option(20, "--limit")) -> None:
    """Show stored conversations, newest first."""
    entries = _forge().orchestrator.load_history(limit=limit)
    if not entries:
        typer.echo("No conversations yet.")
        return
    for entry in entries:
        statuses = ", ".join(
            f"{r.target_key}={r.status.value}" for r in entry.responses
        )
        when = entry.timestamp.isoformat(timespec="seconds")
        typer.echo(f"{entry.id}\t{when}\t{entry.prompt[:60]!r}\t{statuses}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

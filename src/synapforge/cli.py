"""
Command line entry point.

Usage:
    synapforge serve --port 8000
    synapforge generate "hello world" --max-tokens 32
"""

import os

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from synapforge.generation.errors import GenerationError

app = typer.Typer(pretty_exceptions_show_locals=False, help="Synapforge text completion service.")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    model_id: str | None = typer.Option(None, help="HF Hub repo id or local directory. Omit for the dummy model"),
    device: str | None = typer.Option(None, help="Device: 'cpu', 'cuda', 'mps' or 'auto'"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Serve the OpenAI-compatible HTTP API."""
    import uvicorn

    # The app reads its configuration from the environment at import time
    if model_id:
        os.environ["SYNAPFORGE_MODEL_ID"] = model_id
    if device:
        os.environ["SYNAPFORGE_DEVICE"] = device

    uvicorn.run("synapforge.serving.api:app", host=host, port=port, reload=reload)


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Prompt text"),
    model_id: str | None = typer.Option(None, help="HF Hub repo id or local directory. Omit for the dummy model"),
    max_tokens: int = typer.Option(64, help="Maximum number of tokens to generate"),
    temperature: float = typer.Option(0.0, help="Sampling temperature; 0 picks the most likely token"),
    top_k: int | None = typer.Option(None, help="Top-k sampling"),
    top_p: float | None = typer.Option(None, help="Nucleus sampling probability mass"),
    repeat_penalty: float = typer.Option(1.1, help="Penalty applied to recently seen tokens"),
    repeat_last_n: int = typer.Option(64, help="Context window the penalty looks at"),
    seed: int | None = typer.Option(None, help="Sampling seed"),
    device: str = typer.Option("auto", help="Device: 'cpu', 'cuda', 'mps' or 'auto'"),
    no_kv_cache: bool = typer.Option(False, "--no-kv-cache", help="Recompute the full history on every step"),
):
    """Run one completion and stream it to the console."""
    from synapforge.serving.config import ServingConfig
    from synapforge.serving.engine import LLMEngine

    config = ServingConfig(model_id=model_id, device=device, use_kv_cache=not no_kv_cache)
    engine = LLMEngine(config)

    console.print(Panel.fit(f"[bold blue]Synapforge[/bold blue]\n{engine.model_name}", border_style="blue"))
    with console.status("Loading model..."):
        engine.load_model()

    try:
        gen_config = engine.generation_config(
            max_tokens=max_tokens,
            temperature=temperature,
            top_k=top_k,
            top_p=top_p,
            repeat_penalty=repeat_penalty,
            repeat_last_n=repeat_last_n,
            seed=seed,
        )
    except ValueError as e:
        console.print(f"[bold red]Invalid parameters:[/bold red] {e}")
        raise typer.Exit(code=2)

    console.print(prompt, style="yellow", end="", markup=False)
    try:
        result = engine.generate(
            prompt,
            gen_config,
            on_fragment=lambda fragment: console.print(fragment, style="green", end="", markup=False),
        )
    except GenerationError as e:
        console.print()
        console.print(f"[bold red]Generation failed:[/bold red] {e}")
        raise typer.Exit(code=1)
    console.print()

    table = Table(title="Generation Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Prompt tokens", str(result.prompt_tokens))
    table.add_row("Generated tokens", str(result.tokens_generated))
    table.add_row("Finish reason", str(result.finish_reason))
    table.add_row("Throughput", f"{result.tokens_per_second:.2f} token/s")
    console.print(table)


if __name__ == "__main__":
    app()

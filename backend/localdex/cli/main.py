"""CLI entrypoint for localdex."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

import requests
import typer

app = typer.Typer(name="ldx", help="localdex command-line interface")
sources_app = typer.Typer(name="sources", help="Manage sources")
app.add_typer(sources_app, name="sources")

DEFAULT_HOST = "http://127.0.0.1:5173"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("LDX_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    try:
        resp = requests.request(method, url, timeout=600, **kwargs)
    except requests.ConnectionError:
        typer.echo(f"Cannot reach localdex at {base}; is `ldx serve` running?", err=True)
        raise typer.Exit(code=2)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _print(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(5173, "--port", help="Port to bind"),
) -> None:
    """Run the HTTP API with the scheduler and watcher."""
    import uvicorn

    uvicorn.run("localdex.app:app", host=host, port=port, reload=False, log_level="info")


@app.command()
def sync(
    source_id: Optional[str] = typer.Argument(None, help="Source to sync; every source when omitted"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Run an incremental sync now."""
    if source_id:
        _print(_request("POST", f"/sources/{source_id}/sync", host=host).json())
        return
    outcomes = {}
    for source in _request("GET", "/sources", host=host).json():
        outcomes[source["id"]] = _request("POST", f"/sources/{source['id']}/sync", host=host).json()
    _print(outcomes)


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    mode: Optional[str] = typer.Option(None, "--mode", help="text_only, hybrid, llm_assisted or full"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Number of results to return"),
    offset: int = typer.Option(0, "--offset", help="Results to skip"),
    source: List[str] = typer.Option([], "--source", help="Restrict to a source ID (repeatable)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search indexed documents."""
    payload: dict[str, object] = {"query": q, "offset": offset, "source_ids": list(source)}
    if mode is not None:
        payload["mode"] = mode
    if limit is not None:
        payload["limit"] = limit
    resp = _request("POST", "/search", host=host, json=payload)
    _print(resp.json())


@app.command()
def tasks(
    task_id: Optional[str] = typer.Argument(None, help="Show one task with its recent runs"),
    run: bool = typer.Option(False, "--run", help="Run the task now"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show scheduled tasks or trigger one."""
    if task_id is None:
        if run:
            raise typer.BadParameter("--run needs a task id")
        _print(_request("GET", "/scheduler/tasks", host=host).json())
    elif run:
        _print(_request("POST", f"/scheduler/tasks/{task_id}/run", host=host).json())
    else:
        _print(_request("GET", f"/scheduler/tasks/{task_id}", host=host).json())


@app.command()
def exclude(
    source_id: str = typer.Argument(..., help="Source identifier"),
    document: Optional[str] = typer.Option(None, "--document", help="Document ID to exclude"),
    uri: Optional[str] = typer.Option(None, "--uri", help="Document URI to exclude"),
    reason: str = typer.Option("", "--reason", help="Why the document is excluded"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Stop indexing a document and remove it from the index."""
    if not document and not uri:
        raise typer.BadParameter("pass --document or --uri")
    payload = {"document_id": document, "uri": uri, "reason": reason}
    _print(_request("POST", f"/sources/{source_id}/exclusions", host=host, json=payload).json())


@sources_app.command("list")
def list_sources(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List registered sources."""
    _print(_request("GET", "/sources", host=host).json())


@sources_app.command("add")
def add_source(
    path: Path = typer.Argument(..., help="Directory to index"),
    name: Optional[str] = typer.Option(None, "--name", help="Friendly name"),
    include: Optional[str] = typer.Option(None, "--include", help="Include globs, comma separated"),
    exclude_glob: Optional[str] = typer.Option(None, "--exclude", help="Exclude globs, comma separated"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Register a filesystem source."""
    root = path.expanduser().resolve()
    config = {"path": str(root)}
    if include:
        config["include"] = include
    if exclude_glob:
        config["exclude"] = exclude_glob
    payload = {"type": "filesystem", "name": name or root.name, "config": config}
    _print(_request("POST", "/sources", host=host, json=payload).json())


@sources_app.command("remove")
def remove_source(
    source_id: str = typer.Argument(..., help="Source identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Remove a source with its documents, exclusions and credentials."""
    _request("DELETE", f"/sources/{source_id}", host=host)
    _print({"status": "ok"})


if __name__ == "__main__":
    app()

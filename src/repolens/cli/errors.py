"""Rich error messages for the repolens CLI.

Every error shown to the user contains what went wrong and the exact
command or setting that fixes it.

Usage:
    from repolens.cli.errors import err_project_not_found
    console.print(err_project_not_found(project_id))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "google": "GOOGLE_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_invalid_repo(detail: str) -> str:
    return (
        f"[red]Error:[/] {detail}\n"
        "  Use:  https://github.com/<owner>/<repo>  or  <owner>/<repo>"
    )


def err_insufficient_credits(file_count: int, credits: int) -> str:
    """Balance below the repository's file count; shows both numbers."""
    missing = file_count - credits
    return (
        f"[red]Error:[/] Insufficient credits: the repository has {file_count} files, "
        f"your balance is {credits}.\n"
        f"  Run:  repolens credits add {missing}"
    )


def err_host_unavailable(detail: str) -> str:
    return (
        f"[red]Error:[/] GitHub is not reachable: {detail}\n"
        "  Check the URL, or set a token for private repositories:  export GITHUB_TOKEN=..."
    )


def err_project_not_found(project_id: str) -> str:
    return (
        f"[red]Error:[/] Project '{project_id}' not found.\n"
        "  Run:  repolens projects  to list projects."
    )


def err_project_archived(project_id: str) -> str:
    return (
        f"[red]Error:[/] Project '{project_id}' is archived and cannot be ingested.\n"
        "  Run:  repolens ingest <repo-url>  to create a new project."
    )


def err_ingestion_running(project_id: str) -> str:
    return (
        f"[red]Error:[/] Ingestion of '{project_id}' is still running.\n"
        f"  Run:  repolens status {project_id}  and retry once it has finished."
    )


def err_config(detail: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {detail}\n"
        "  Fix repolens.yaml or ~/.repolens/config.yaml and retry."
    )


def warn_not_ready(project_id: str, status: str) -> str:
    """Question asked before ingestion completed."""
    return (
        f"[yellow]Warning:[/] Project '{project_id}' is {status}; answers may be incomplete.\n"
        f"  Run:  repolens status {project_id}"
    )

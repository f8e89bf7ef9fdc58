"""deepread rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from deepread.cli.errors import err_no_db
    console.print(err_no_db(".deepread.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".deepread.db") -> str:
    """No project database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  deepread init"
    )


def err_config(message: str) -> str:
    """Config file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix deepread.yaml or ~/.deepread/config.yaml and try again."
    )


def err_validation(message: str) -> str:
    return f"[red]Error:[/] {message}"


def err_no_sources() -> str:
    """No in-scope source has cached content."""
    return (
        "[red]Error:[/] None of the selected sources has cached content.\n"
        "  Add content:  deepread sources add <file>\n"
        "  List sources: deepread sources list"
    )


def err_ai_unavailable(message: str) -> str:
    return (
        f"[red]Error:[/] AI provider unavailable: {message}\n"
        "  Check your API key and network connection, then retry."
    )


def err_query_failed(message: str) -> str:
    return (
        f"[red]Error:[/] Query failed: {message}\n"
        "  Retry the request; rephrasing the query may help."
    )


def err_source_not_found(source_id: str) -> str:
    """Source id not present in the project."""
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not in this project.\n"
        "  Run:  deepread sources list  to see all sources."
    )


def err_job_not_found(job_id: str) -> str:
    """Job id unknown or already expired."""
    return (
        f"[yellow]Job not found:[/] '{job_id}' does not exist or has expired.\n"
        "  Run:  deepread jobs latest  to see the most recent job."
    )


def err_job_timeout(job_id: str, minutes: float) -> str:
    """Polling gave up; the job itself may still finish."""
    return (
        f"[yellow]Timed out:[/] job '{job_id}' did not finish within {minutes:g} minutes.\n"
        f"  Check later:  deepread jobs status {job_id}"
    )


_BY_CODE = {
    "VALIDATION_ERROR": err_validation,
    "AI_UNAVAILABLE": err_ai_unavailable,
    "QUERY_FAILED": err_query_failed,
}


def err_from_response(body: dict) -> str:
    """Render an API error body ``{error, code}``."""
    code = body.get("code", "")
    message = body.get("error", "Unknown error")
    if code == "NO_SOURCES":
        return err_no_sources()
    render = _BY_CODE.get(code)
    if render is None:
        return f"[red]Error:[/] {message}"
    return render(message)

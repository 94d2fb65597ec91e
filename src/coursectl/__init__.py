"""coursectl -- command-line administration for Canvas-style LMS deployments.

This package holds the API-access core shared by every coursectl command:
an authenticated, rate-limited, retrying HTTP client with transparent
pagination and an on-disk response cache, plus the token storage and
refresh machinery it relies on.

Typical workflow::

    coursectl auth set-token --instance school --access-token 1~abc
    coursectl api GET /api/v1/courses --paginate
    coursectl cache stats

Modules:
    app: The Typer app and the ``coursectl`` entry point.
    models: Config, token, and cache-entry models.
    config: Directories, ``config.json``, and instance resolution.
    context: Cancellation and deadline handle for blocking calls.
    exceptions: Error types and the exit code each one maps to.
    exit_codes: Process exit codes.
    output: Results on stdout, diagnostics and log records on stderr.
    auth: Token storage and single-flight refresh.
    cache: File-per-entry response cache.
    client: Rate-limited, retrying API client.
"""

__version__ = "0.1.0"

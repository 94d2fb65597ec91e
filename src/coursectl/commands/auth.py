"""Auth commands -- manage stored tokens per instance.

Provides the ``coursectl auth`` sub-command group with commands to show
the token state of an instance, store token material obtained elsewhere,
and remove it again.

Typical workflow::

    coursectl auth set-token --instance school --access-token 1~abc \\
        --refresh-token r1 --expires-in 3600
    coursectl auth status --instance school
    coursectl auth logout --instance school
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import typer

from coursectl.output import OutputFormat, get_output, info, success, suggest

auth_app = typer.Typer(no_args_is_help=True)


def _instance_name(ctx: typer.Context, instance: Optional[str]) -> str:
    """Resolve the instance from the command option, the global option, or config.

    Raises:
        InvalidUsageError: If nothing selects an instance.
    """
    from coursectl.config import load_global_config, resolve_instance_name
    from coursectl.exceptions import InvalidUsageError

    cli_instance = instance or (ctx.obj or {}).get("instance")
    name = resolve_instance_name(load_global_config(), cli_instance)
    if not name:
        raise InvalidUsageError(
            "No instance selected. Pass --instance NAME or set COURSECTL_INSTANCE."
        )
    return name


@auth_app.command("status")
def auth_status(
    ctx: typer.Context,
    instance: Optional[str] = typer.Option(None, "--instance", "-i", help="Instance name."),
) -> None:
    """Show the auth type and stored token state of an instance.

    Example::

        coursectl auth status --instance school
    """
    from coursectl.auth import create_token_store
    from coursectl.config import get_config_dir, load_global_config
    from coursectl.exceptions import TokenNotFoundError

    name = _instance_name(ctx, instance)
    configured = load_global_config().instances.get(name)
    store = create_token_store(get_config_dir())

    backend = store.which(name)
    expiry: Optional[datetime] = None
    has_refresh = False
    stored = False
    try:
        token = store.load(name)
    except TokenNotFoundError:
        pass
    else:
        stored = True
        expiry = token.expiry
        has_refresh = bool(token.refresh_token)

    now = datetime.now(timezone.utc)
    if expiry is None:
        state = "no expiry" if stored else "-"
    elif expiry <= now:
        state = "expired"
    else:
        state = f"valid for {int((expiry - now).total_seconds() // 60)} min"

    record = {
        "instance": name,
        "url": configured.url if configured else None,
        "auth_type": configured.auth_type if configured else "unconfigured",
        "token_stored": stored,
        "token_backend": backend,
        "refresh_token": has_refresh,
        "expiry": expiry.isoformat() if expiry else None,
        "state": state,
    }

    output = get_output()
    if output.format == OutputFormat.JSON:
        output.format_response(record)
        return

    rows = [[key.replace("_", " ").title(), "-" if value is None else str(value)]
            for key, value in record.items()]
    output.print_table(["Field", "Value"], rows, title="Auth Status")
    if not stored and (configured is None or configured.auth_type != "token"):
        suggest(f"Store a token: coursectl auth set-token --instance {name} --access-token ...")


@auth_app.command("set-token")
def auth_set_token(
    ctx: typer.Context,
    access_token: str = typer.Option(..., "--access-token", help="OAuth2 access token."),
    refresh_token: Optional[str] = typer.Option(
        None, "--refresh-token", help="OAuth2 refresh token."
    ),
    expires_in: Optional[int] = typer.Option(
        None, "--expires-in", min=1, help="Access token lifetime in seconds."
    ),
    instance: Optional[str] = typer.Option(None, "--instance", "-i", help="Instance name."),
) -> None:
    """Store token material for an instance in the token store.

    Example::

        coursectl auth set-token --instance school --access-token 1~abc --expires-in 3600
    """
    from coursectl.auth import create_token_store
    from coursectl.config import get_config_dir, load_global_config
    from coursectl.models import Token

    name = _instance_name(ctx, instance)
    expiry = None
    if expires_in is not None:
        expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

    store = create_token_store(get_config_dir())
    store.save(
        name,
        Token(
            access_token=access_token,
            refresh_token=refresh_token or "",
            expiry=expiry,
            instance_name=name,
        ),
    )
    success(f'Token stored for "{name}" ({store.which(name) or "unknown"} store).')
    if name not in load_global_config().instances:
        info(f'Instance "{name}" is not configured yet; add it to config.json to use it.')


@auth_app.command("logout")
def auth_logout(
    ctx: typer.Context,
    instance: Optional[str] = typer.Option(None, "--instance", "-i", help="Instance name."),
) -> None:
    """Delete the stored token of an instance.

    Example::

        coursectl auth logout --instance school
    """
    from coursectl.auth import create_token_store
    from coursectl.config import get_config_dir

    name = _instance_name(ctx, instance)
    store = create_token_store(get_config_dir())
    if not store.exists(name):
        info(f'No stored token for "{name}".')
        return
    store.delete(name)
    success(f'Logged out of "{name}".')

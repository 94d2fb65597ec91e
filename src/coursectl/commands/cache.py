"""Cache commands -- inspect and prune the response cache.

Provides the ``coursectl cache`` sub-command group::

    coursectl cache stats          # location, size, entry counts
    coursectl cache clear          # remove expired entries only
    coursectl cache clear --all    # remove everything
"""

from __future__ import annotations

import typer

from coursectl.cache import DiskCache
from coursectl.config import get_response_cache_dir
from coursectl.output import OutputFormat, get_output, info, success

cache_app = typer.Typer(no_args_is_help=True)


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


@cache_app.command("stats")
def cache_stats() -> None:
    """Show cache location, size, and total/active/expired entry counts."""
    cache = DiskCache(get_response_cache_dir())
    stats = cache.stats()
    size = cache.size_bytes()
    output = get_output()

    if output.format == OutputFormat.JSON:
        output.format_response(
            {
                "location": str(cache.directory),
                "size_bytes": size,
                "total": stats.total,
                "active": stats.active,
                "expired": stats.expired,
                "active_rate": round(stats.active_rate, 1),
            }
        )
        return

    output.print_data(f"Location:        {cache.directory}")
    output.print_data(f"Size:            {_format_bytes(size)}")
    output.print_data(f"Total entries:   {stats.total}")
    output.print_data(f"Active entries:  {stats.active}")
    output.print_data(f"Expired entries: {stats.expired}")
    if stats.total > 0:
        output.print_data(f"Active rate:     {stats.active_rate:.1f}%")


@cache_app.command("clear")
def cache_clear(
    all_entries: bool = typer.Option(
        False, "--all", help="Remove every entry, not just expired ones."
    ),
) -> None:
    """Remove expired cache entries (or all of them with ``--all``)."""
    cache = DiskCache(get_response_cache_dir())
    if all_entries:
        before = cache.stats().total
        cache.clear()
        success(f"Cleared {before} cache entr{'y' if before == 1 else 'ies'}.")
        return

    removed = cache.clear_expired()
    if removed == 0:
        info("No expired cache entries.")
    else:
        success(f"Cleared {removed} expired cache entr{'y' if removed == 1 else 'ies'}.")

"""Sub-commands registered on the root app by :func:`coursectl.app._register_commands`.

``cache`` and ``auth`` are :class:`typer.Typer` groups; ``api`` is a single
command function.
"""

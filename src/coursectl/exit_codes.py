"""Process exit codes, one per failure category.

Scripts can branch on ``$?`` instead of parsing stderr; for example a
missing course exits with :data:`EXIT_NOT_FOUND`::

    $ coursectl api GET /api/v1/courses/999 || echo "status $?"
    Error: GET /api/v1/courses/999 failed: HTTP 404
    status 4
"""

EXIT_SUCCESS = 0

EXIT_GENERIC_FAILURE = 1
"""Configuration problems and anything not covered below."""

EXIT_INVALID_USAGE = 2
"""Bad arguments or option values."""

EXIT_AUTH_FAILURE = 3
"""Rejected or expired credentials (401, failed refresh) and 403."""

EXIT_NOT_FOUND = 4
"""HTTP 404."""

EXIT_SERVER_ERROR = 5
"""5xx, exhausted 429 retries, and any other error status."""

EXIT_CONNECTION_ERROR = 6
"""No HTTP response at all: timeout, refused connection, DNS failure."""

EXIT_CANCELLED = 130
"""Ctrl-C or an expired deadline."""

"""Router configuration.

RouterConfig is a frozen dataclass — immutable after creation, IDE-autocompletable,
no string-key dict lookups.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class RouterConfig:
    """Router configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = RouterConfig(debug=True, cache_enabled=True)
    """

    # Diagnostics: tracebacks in 500 bodies, per-request timing logs
    debug: bool = False

    # Route-table snapshot
    cache_enabled: bool = False
    cache_path: str | Path = ".switchyard/routes.json"

    # Sub-pattern for placeholders without an explicit constraint (one segment)
    default_constraint: str = r"[^/]+"

    # Rate limiting
    rate_limit_enabled: bool = True
    trust_forwarded_for: bool = False  # ip selector reads X-Forwarded-For first hop

"""Optional production features compiled into a generated server.

Renders templates/production.py.j2 into one support block (leading imports
first) that the assembler merges like any other block. The per-tool hooks
(rate-limit check, call logging, retry wrapper) live in server.py.j2 and
key off the same ProductionConfig flags.
"""

from __future__ import annotations

from typing import Optional

from .codegen import render_template
from .models import ProductionConfig


def has_features(config: Optional[ProductionConfig]) -> bool:
    """True when at least one feature is switched on."""
    return config is not None and (
        config.enable_logging or config.enable_rate_limiting or config.enable_retries
    )


def render_production_code(config: Optional[ProductionConfig], http_client: bool = False) -> str:
    """Support code for the enabled features; empty string when none are."""
    if not has_features(config):
        return ""
    return render_template("production.py.j2", config=config, http_client=http_client)

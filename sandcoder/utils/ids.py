"""Identifier generation."""

import time

from cuid2 import cuid_wrapper

cuid = cuid_wrapper()


def new_conversation_id() -> str:
    """Sortable, collision-resistant conversation id (``conv_<unix seconds>_<cuid>``)."""
    return f"conv_{int(time.time())}_{cuid()}"


def new_tool_call_id() -> str:
    """Id for a tool call the provider sent without an id, or with a repeated one."""
    return f"call_{cuid()}"

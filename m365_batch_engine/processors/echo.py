"""Echo processor — returns each item unchanged. Useful for dry runs of an input file."""

from __future__ import annotations

from typing import Any

from .base import BaseProcessor


class EchoProcessor(BaseProcessor):
    name = "echo"
    description = "Return each work item unchanged (dry run)"

    def __init__(self, **_: Any):
        pass

    def process(self, item: Any) -> Any:
        return item

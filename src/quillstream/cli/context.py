from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console

from quillstream.application.container import ServiceContainer
from quillstream.core.config import AppPaths


@dataclass(slots=True)
class CLIContext:
    paths: AppPaths
    console: Console
    owner_id: str
    services: ServiceContainer

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import ConfigDict

from ._base import WireModel


CHANNEL_NAME = "pomodoro.pom"


class IpcRequest(WireModel):
    command: Optional[str] = None
    options: Optional[Dict[str, Optional[str]]] = None
    positionals: Optional[List[str]] = None

    def has_option(self, name: str) -> bool:
        return bool(self.options) and name in self.options

    def option(self, name: str) -> Optional[str]:
        return (self.options or {}).get(name)


class IpcResponse(WireModel):
    ok: bool
    message: str = ""
    payload: Optional[str] = None

    model_config = ConfigDict(frozen=True)

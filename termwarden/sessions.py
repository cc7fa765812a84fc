"""
Monitored terminal sessions and the folders that scope them.

These are read models owned by the surrounding platform. The supervision
core only looks them up for authorization and scope checks.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Folder:
    id: str
    user_id: str
    name: str
    path: Optional[str] = None


@dataclass(frozen=True)
class TerminalSession:
    id: str
    user_id: str
    name: str
    handle: str                       # Transport handle (tmux session name)
    folder_id: Optional[str] = None
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

"""
Command Safety Validation
=========================

Validates commands before a supervisor injects them into a terminal.

Two tiers of patterns:
- destructive: always rejected (root deletion, fork bombs, raw disk writes,
  filesystem formats, piping remote scripts into a shell, opening up or
  re-owning the filesystem root)
- cautionary: allowed but flagged dangerous so the caller can ask for an
  extra confirmation (recursive/forced rm, sudo rm, permission changes,
  force-kill signals)

Matching is case-insensitive and ignores surrounding whitespace.
"""

import re
from dataclasses import dataclass
from typing import Optional

from termwarden.config import MAX_COMMAND_LENGTH


# A path argument ends at whitespace, end of input, or a shell separator
_END = r"(?=\s|$|[;&|)])"
_RECURSIVE_FLAG = r"(?:-[a-z]*r[a-z]*|--recursive)"
_ROOT_TARGET = r"(?:/\*?|~/?\*?|\$home/?\*?|\"/\"|'/')"
_RAW_DISK = r"/dev/(?:sd|hd|vd|xvd|nvme|mmcblk|disk)[a-z0-9]*"


@dataclass(frozen=True)
class CommandPattern:
    """A named regex describing one class of risky input."""
    pattern_id: str
    description: str
    regex: re.Pattern

    def matches(self, command: str) -> bool:
        return self.regex.search(command) is not None


def _pattern(pattern_id: str, description: str, regex: str) -> CommandPattern:
    return CommandPattern(pattern_id, description, re.compile(regex, re.IGNORECASE))


DESTRUCTIVE_PATTERNS: tuple[CommandPattern, ...] = (
    _pattern(
        "rm_root",
        "Recursive deletion of the filesystem root or home directory",
        rf"\brm\s+(?:[^;&|]*\s)?{_RECURSIVE_FLAG}\s+(?:[^;&|]*\s)?{_ROOT_TARGET}{_END}",
    ),
    _pattern(
        "rm_no_preserve_root",
        "Deletion with --no-preserve-root",
        r"\brm\b[^;&|]*--no-preserve-root",
    ),
    _pattern(
        "fork_bomb",
        "Fork bomb",
        r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
    ),
    _pattern(
        "dd_raw_disk",
        "dd writing to a raw disk device",
        rf"\bdd\b[^;&|]*\bof=\s*{_RAW_DISK}",
    ),
    _pattern(
        "redirect_raw_disk",
        "Shell redirection onto a raw disk device",
        rf">\s*{_RAW_DISK}",
    ),
    _pattern(
        "mkfs",
        "Filesystem format",
        r"\b(?:mkfs(?:\.[a-z0-9]+)?|mke2fs|mkswap|wipefs)\b",
    ),
    _pattern(
        "remote_pipe_shell",
        "Remote script piped into a shell",
        r"\b(?:curl|wget|fetch)\b[^|;&]*\|\s*(?:sudo\s+)?(?:env\s+)?(?:ba|z|da|k|fi)?sh\b",
    ),
    _pattern(
        "chmod_root_world_writable",
        "Making the filesystem root world-writable",
        rf"\bchmod\s+(?:-[a-z]+\s+)*(?:0?777|[ugoa]*\+[rwx]*w[rwx]*)\s+{_ROOT_TARGET}{_END}",
    ),
    _pattern(
        "chown_root",
        "Changing ownership of the filesystem root",
        rf"\bchown\s+(?:-[a-z]+\s+)*\S+\s+{_ROOT_TARGET}{_END}",
    ),
)


CAUTIONARY_PATTERNS: tuple[CommandPattern, ...] = (
    _pattern(
        "rm_recursive",
        "Recursive file deletion",
        rf"\brm\s+(?:[^;&|]*\s)?{_RECURSIVE_FLAG}\b",
    ),
    _pattern(
        "rm_force",
        "Forced file deletion",
        r"\brm\s+(?:[^;&|]*\s)?-[a-z]*f[a-z]*\b",
    ),
    _pattern(
        "sudo_rm",
        "File deletion as root",
        r"\bsudo\s+(?:-\S+\s+)*rm\b",
    ),
    _pattern(
        "permission_change",
        "Permission or ownership change",
        r"\b(?:chmod|chown|chgrp)\b",
    ),
    _pattern(
        "force_kill",
        "Force-kill signal",
        r"\b(?:kill|pkill|killall)\s+(?:[^;&|]*\s)?-(?:9|kill|sigkill)\b|\b(?:kill|pkill|killall)\s+(?:[^;&|]*\s)?-s\s+(?:9|kill|sigkill)\b",
    ),
)


@dataclass(frozen=True)
class CommandValidation:
    """Outcome of validate_command."""
    valid: bool
    reason: Optional[str] = None
    dangerous: bool = False
    pattern_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "dangerous": self.dangerous,
            "pattern_id": self.pattern_id,
        }


def validate_command(command: str, max_length: int = MAX_COMMAND_LENGTH) -> CommandValidation:
    """
    Validate a command for injection.

    Args:
        command: The raw command text
        max_length: Hard ceiling on command length

    Returns:
        CommandValidation. ``valid`` False means the command must not be sent;
        ``dangerous`` True on a valid command means extra confirmation is due.
    """
    if command is None or not command.strip():
        return CommandValidation(False, reason="Command is empty")

    if len(command) > max_length:
        return CommandValidation(
            False, reason=f"Command exceeds maximum length of {max_length} characters"
        )

    if "\x00" in command:
        return CommandValidation(False, reason="Command contains null bytes", dangerous=True)

    normalized = command.strip()

    for pattern in DESTRUCTIVE_PATTERNS:
        if pattern.matches(normalized):
            return CommandValidation(
                False,
                reason=f"Blocked destructive command: {pattern.description}",
                dangerous=True,
                pattern_id=pattern.pattern_id,
            )

    for pattern in CAUTIONARY_PATTERNS:
        if pattern.matches(normalized):
            return CommandValidation(
                True,
                reason=f"Potentially dangerous: {pattern.description}",
                dangerous=True,
                pattern_id=pattern.pattern_id,
            )

    return CommandValidation(True)

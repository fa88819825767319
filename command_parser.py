"""
Terminal command parser.

Turns raw terminal input such as ``!switch Zen Monk`` into a
``ParsedCommand`` carrying the action the dispatcher should run. Parsing
never raises; malformed input yields a ParsedCommand with success=False,
a message and a suggestion for the user.

Commands:
    !help, !switch <name>, !characters, !status, !pause, !resume,
    !test, !clear, !config, !debug
"""

from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from constants import COMMAND_MAX_INPUT_LENGTH

logger = logging.getLogger(__name__)

MAX_CHARACTER_NAME_LENGTH = 50
CHARACTER_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-]+$")
SHELL_COMMANDS = frozenset({"ls", "cd", "pwd", "mkdir", "rm", "cp", "mv"})


@dataclass(frozen=True)
class CommandSpec:
    """Registry entry for one terminal command."""
    action: str
    description: str
    usage: str
    min_args: int = 0
    max_args: int = 0
    arg_description: str = "parameters"


COMMAND_REGISTRY: dict[str, CommandSpec] = {
    "help": CommandSpec("display-help", "Show all available commands", "!help"),
    "switch": CommandSpec(
        "switch-character",
        "Switch to character (e.g., !switch Corporate AI)",
        "!switch <Character Name>",
        min_args=1,
        max_args=10,
        arg_description="character name",
    ),
    "characters": CommandSpec("list-characters", "List all available characters", "!characters"),
    "status": CommandSpec("show-status", "Show current character and system status", "!status"),
    "pause": CommandSpec("pause-messages", "Pause automatic message rotation", "!pause"),
    "resume": CommandSpec("resume-messages", "Resume automatic message rotation", "!resume"),
    "test": CommandSpec("test-message", "Show test message from current character", "!test"),
    "clear": CommandSpec("clear-terminal", "Clear terminal command history", "!clear"),
    "config": CommandSpec("show-config", "Display current configuration settings", "!config"),
    "debug": CommandSpec("show-debug", "Show debug information and system status", "!debug"),
}


@dataclass
class ParsedCommand:
    """
    Result of parsing one line of terminal input.

    Attributes:
        success: False if the input was rejected
        command: Command name without the "!" prefix (lower-case)
        action: Dispatcher action, e.g. "switch-character"
        args: Whitespace-separated arguments
        data: Action payload, e.g. {"character_name": "Zen Monk"}
        message: Error message when success is False
        suggestion: Hint for the user when success is False
        raw: The trimmed input
    """
    success: bool
    command: Optional[str] = None
    action: Optional[str] = None
    args: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    message: str = ""
    suggestion: Optional[str] = None
    raw: str = ""

    @classmethod
    def rejected(cls, raw: str, message: str, suggestion: Optional[str], command: Optional[str] = None) -> ParsedCommand:
        return cls(success=False, command=command, raw=raw, message=message, suggestion=suggestion)


class CommandParser:
    """
    Validates and parses terminal input.

    Usage:
        parser = CommandParser()
        parsed = parser.parse("!switch zen")
        if parsed.success:
            await queue.submit(parsed)
    """

    def __init__(self, registry: Optional[dict[str, CommandSpec]] = None, max_input_length: int = COMMAND_MAX_INPUT_LENGTH) -> None:
        self.registry = registry if registry is not None else COMMAND_REGISTRY
        self.max_input_length = max_input_length

    @property
    def available_commands(self) -> list[str]:
        return list(self.registry)

    def parse(self, text: Optional[str]) -> ParsedCommand:
        """Parse one line of input. Never raises."""
        raw = (text or "").strip()

        error = self._validate_format(raw)
        if error is not None:
            return error

        parts = raw[1:].split()
        if not parts:
            return ParsedCommand.rejected(raw, "Empty command", "Type !help for available commands")
        command, args = parts[0].lower(), parts[1:]

        spec = self.registry.get(command)
        if spec is None:
            logger.debug("[CommandParser] Unknown command: %s", command)
            return ParsedCommand.rejected(
                raw, f'Unknown command "{command}"', self._unknown_command_suggestion(command), command
            )

        if len(args) < spec.min_args:
            return ParsedCommand.rejected(
                raw,
                f"Command !{command} requires {spec.min_args} {spec.arg_description}",
                f"Usage: {spec.usage}",
                command,
            )
        if len(args) > spec.max_args:
            return ParsedCommand.rejected(
                raw,
                f"Command !{command} accepts maximum {spec.max_args} parameters",
                f"Usage: {spec.usage}",
                command,
            )

        data: dict[str, Any] = {}
        if command == "switch":
            name = " ".join(args).strip()
            error = self._validate_character_name(raw, name)
            if error is not None:
                return error
            data["character_name"] = name

        return ParsedCommand(success=True, command=command, action=spec.action, args=args, data=data, raw=raw)

    def _validate_format(self, raw: str) -> Optional[ParsedCommand]:
        if not raw:
            return ParsedCommand.rejected(raw, "Empty command", "Type !help for available commands")

        if not raw.startswith("!"):
            lowered = raw.lower()
            if "help" in lowered:
                suggestion = "For help, type: !help"
            elif "switch" in lowered or "change" in lowered:
                suggestion = "To switch characters, type: !switch <Character Name>"
            else:
                suggestion = f"Commands must start with ! (e.g., !help) - try: !{raw}"
            return ParsedCommand.rejected(raw, "Commands must start with ! (exclamation mark)", suggestion)

        if len(raw) > self.max_input_length:
            return ParsedCommand.rejected(
                raw,
                f"Command too long (maximum {self.max_input_length} characters)",
                "Use shorter commands or break into multiple commands",
            )

        if raw.startswith("!!"):
            return ParsedCommand.rejected(
                raw,
                "Commands should start with single ! only",
                "Use single ! at the beginning (e.g., !help, not !!help)",
            )

        head = raw[1:].split()
        if head and head[0].lower() in SHELL_COMMANDS:
            return ParsedCommand.rejected(
                raw,
                f'"{head[0].lower()}" is not a shell command here',
                "This terminal controls the ambient persona, not a system shell. Type !help for available commands.",
            )
        return None

    def _validate_character_name(self, raw: str, name: str) -> Optional[ParsedCommand]:
        if len(name) > MAX_CHARACTER_NAME_LENGTH:
            return ParsedCommand.rejected(
                raw,
                f"Character name too long (maximum {MAX_CHARACTER_NAME_LENGTH} characters)",
                "Use a shorter character name or check !characters for valid options",
                "switch",
            )
        if not CHARACTER_NAME_PATTERN.match(name):
            return ParsedCommand.rejected(
                raw,
                "Character name contains invalid characters",
                "Use only letters, numbers, spaces, and hyphens in character names",
                "switch",
            )
        return None

    def similar_commands(self, command: str) -> list[str]:
        """Up to three registered commands close to ``command``."""
        substring = [name for name in self.registry if command in name or name in command]
        close = difflib.get_close_matches(command, list(self.registry), n=3, cutoff=0.6)
        merged = list(dict.fromkeys(substring + close))
        return merged[:3]

    def _unknown_command_suggestion(self, command: str) -> str:
        suggestions = self.similar_commands(command)
        if len(suggestions) == 1:
            return f'Did you mean "!{suggestions[0]}"? (Type exactly as shown)'
        if suggestions:
            return f"Did you mean one of these: {', '.join('!' + s for s in suggestions)}?"
        if len(command) <= 2:
            return "Command too short. Type !help to see all available commands"
        if "change" in command:
            return "To switch characters, use: !switch <Character Name> (e.g., !switch Zen Monk)"
        return "Type !help for all available commands, or !characters to see character options"

    def help_text(self) -> str:
        width = max(len(spec.usage) for spec in self.registry.values()) + 2
        lines = ["Ambient Shell Commands:", ""]
        lines.extend(f"  {spec.usage.ljust(width)}- {spec.description}" for spec in self.registry.values())
        return "\n".join(lines)

"""
Mode content sources for the message scheduler.

A content source turns a mode id into the mode's message pool and timing
overrides. Modes that ship their own message list use it as-is; modes
that don't get a pool mixed from the category master lists according to
their category weights.

Two sources are provided:
- MappingMessageSource: backed by the persona mappings dict (config/)
- DirectoryMessageSource: backed by a content directory laid out as
  modes/<mode>/config.json, modes/<mode>/messages.json and
  master-messages/<category>.json
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from config import get_master_messages
from exceptions import ContentLoadError
from message_selector import MessageSelector
from settings import SchedulerSettings

logger = logging.getLogger(__name__)

MODE_CATEGORY = "mode"


@dataclass
class ModeContent:
    """
    Message pool and presentation hints for one mode.

    Attributes:
        mode: Mode id
        messages: Message texts, in pool order
        categories: text -> category; texts not listed are MODE_CATEGORY
        min_delay_seconds: Per-mode override of the scheduler's minimum delay
        max_delay_seconds: Per-mode override of the scheduler's maximum delay
        popup_style: UI hint passed through on every emitted message
        animation_type: UI hint passed through on every emitted message
    """
    mode: str
    messages: list[str]
    categories: dict[str, str] = field(default_factory=dict)
    min_delay_seconds: Optional[float] = None
    max_delay_seconds: Optional[float] = None
    popup_style: str = "overlay"
    animation_type: str = "normal"

    def category_of(self, text: str) -> str:
        return self.categories.get(text, MODE_CATEGORY)


class MessageSource(Protocol):
    """Loads the content for a mode. Raises ContentLoadError on failure."""

    def load(self, mode: str) -> ModeContent: ...

    def invalidate(self, mode: str) -> None: ...


class _CachingSource:
    """Shared per-instance cache and mode-content assembly."""

    def __init__(
        self,
        selector: Optional[MessageSelector] = None,
        settings: Optional[SchedulerSettings] = None,
    ) -> None:
        self.selector = selector or MessageSelector()
        self.settings = settings or SchedulerSettings()
        self._cache: dict[str, ModeContent] = {}

    def load(self, mode: str) -> ModeContent:
        cached = self._cache.get(mode)
        if cached is not None:
            return cached
        content = self._load_uncached(mode)
        self._cache[mode] = content
        logger.debug("[MessageSource] Loaded %d messages for mode %s", len(content.messages), mode)
        return content

    def invalidate(self, mode: str) -> None:
        self._cache.pop(mode, None)

    def _load_uncached(self, mode: str) -> ModeContent:
        raise NotImplementedError

    def _build(
        self,
        mode: str,
        mode_config: Mapping[str, Any],
        messages: Optional[list[str]],
        master: Mapping[str, list[str]],
    ) -> ModeContent:
        categories: dict[str, str] = {}
        if messages is None:
            weights = mode_config.get("messageProbabilities") or self.settings.category_weights
            mixed = self.selector.mix_categories(master, weights, self.settings.mix_total_messages)
            messages = [text for text, _ in mixed]
            categories = {text: category for text, category in mixed}

        if not messages:
            raise ContentLoadError(mode, "no messages available")

        return ModeContent(
            mode=mode,
            messages=list(messages),
            categories=categories,
            min_delay_seconds=mode_config.get("minDelaySeconds"),
            max_delay_seconds=mode_config.get("maxDelaySeconds"),
            popup_style=mode_config.get("popupStyle", "overlay"),
            animation_type=mode_config.get("animationType", "normal"),
        )


class MappingMessageSource(_CachingSource):
    """
    Content source backed by the persona mappings dict.

    Usage:
        source = MappingMessageSource(load_persona_mappings())
        content = source.load("zen-monk")
    """

    def __init__(
        self,
        mappings: Mapping[str, Any],
        selector: Optional[MessageSelector] = None,
        settings: Optional[SchedulerSettings] = None,
    ) -> None:
        super().__init__(selector, settings)
        self._mappings = mappings

    def _load_uncached(self, mode: str) -> ModeContent:
        mode_config = self._mappings.get("modes", {}).get(mode)
        if mode_config is None:
            raise ContentLoadError(mode, "unknown mode")
        return self._build(mode, mode_config, mode_config.get("messages"), get_master_messages(self._mappings))


class DirectoryMessageSource(_CachingSource):
    """Content source backed by JSON files under a content directory."""

    def __init__(
        self,
        root: str | Path,
        selector: Optional[MessageSelector] = None,
        settings: Optional[SchedulerSettings] = None,
    ) -> None:
        super().__init__(selector, settings)
        self.root = Path(root)

    def _read_json(self, path: Path) -> Any:
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _load_master(self) -> dict[str, list[str]]:
        master: dict[str, list[str]] = {}
        master_dir = self.root / "master-messages"
        if not master_dir.is_dir():
            return master
        for path in sorted(master_dir.glob("*.json")):
            try:
                master[path.stem] = list(self._read_json(path))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("[MessageSource] Failed to load master messages %s: %s", path.name, e)
        return master

    def _load_uncached(self, mode: str) -> ModeContent:
        mode_dir = self.root / "modes" / mode
        config_path = mode_dir / "config.json"
        try:
            mode_config = self._read_json(config_path)
        except FileNotFoundError as e:
            raise ContentLoadError(mode, f"missing {config_path.name}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ContentLoadError(mode, str(e)) from e

        messages: Optional[list[str]] = None
        messages_path = mode_dir / "messages.json"
        if messages_path.exists():
            try:
                messages = list(self._read_json(messages_path))
            except (OSError, json.JSONDecodeError) as e:
                raise ContentLoadError(mode, str(e)) from e

        master = self._load_master() if messages is None else {}
        return self._build(mode, mode_config, messages, master)

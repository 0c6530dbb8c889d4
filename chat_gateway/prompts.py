"""
System prompt lookup: (domain, security level) -> prompt text.
Prompts live in <prompts_dir>/<domain>/<level>.txt. A missing file fails closed with PromptLookupError.
"""
import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)


class Domain(str, Enum):
    GENERAL = "general"
    FINANCE = "finance"
    MEDICINE = "medicine"
    VACATION_RENTAL = "vacation-rental"
    TAXES = "taxes"


class Level(str, Enum):
    INSECURE = "insecure"  # standard prompt
    SECURE = "secure"  # enhanced prompt


class LevelLabel(str, Enum):
    """External path labels; deliberately say nothing about which prompt they select."""
    MINNOW = "minnow"
    SHARK = "shark"


LABEL_TO_LEVEL = {
    LevelLabel.MINNOW: Level.INSECURE,
    LevelLabel.SHARK: Level.SECURE,
}


class PromptLookupError(LookupError):
    """No prompt text for a declared (domain, level) pair."""


@lru_cache(maxsize=None)
def _read_prompt(prompts_dir: Path, domain: str, level: str) -> str:
    path = prompts_dir / domain / f"{level}.txt"
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError as e:
        raise PromptLookupError(f"No {level} prompt for domain '{domain}'") from e


class PromptResolver:
    def __init__(self, prompts_dir: Path) -> None:
        self.prompts_dir = Path(prompts_dir)

    def get_system_prompt(self, domain: Domain = Domain.GENERAL, level: Level = Level.INSECURE) -> str:
        return _read_prompt(self.prompts_dir, Domain(domain).value, Level(level).value)

    def missing(self) -> list[tuple[str, str]]:
        """Every declared (domain, level) pair that has no prompt file."""
        gaps = []
        for domain in Domain:
            for level in Level:
                if not (self.prompts_dir / domain.value / f"{level.value}.txt").is_file():
                    gaps.append((domain.value, level.value))
        return gaps

"""
Table configuration

Settings applied when opening or creating a table: code page override,
defaults for new tables, memo block size and decoding leniency.  Includes
load_config() for reading a JSON config file with silent fallback to
compiled defaults.
"""

from __future__ import annotations

import codecs
import datetime
import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


DIALECT_NAMES = ("foxpro", "visual_foxpro")


@dataclass
class TableConfig:
    """Options for opening and creating tables."""

    # Python codec name; overrides the header's language driver when set
    encoding: str | None = None
    # Language driver id written into new tables (0x03 = Windows ANSI)
    language_driver: int = 0x03
    memo_block_size: int = 64
    dialect: str = "visual_foxpro"
    logical_bad_is_false: bool = False
    sync_on_flush: bool = True
    clock: Callable[[], datetime.date] = field(default=datetime.date.today, repr=False)

    def validate(self) -> list[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: list[str] = []
        if not isinstance(self.memo_block_size, int) or not 1 <= self.memo_block_size <= 0xFFFF:
            errors.append(f"memo_block_size: {self.memo_block_size!r} not in [1, 65535]")
        if not isinstance(self.language_driver, int) or not 0 <= self.language_driver <= 0xFF:
            errors.append(f"language_driver: {self.language_driver!r} not in [0, 255]")
        if self.dialect not in DIALECT_NAMES:
            errors.append(f"dialect: {self.dialect!r} not one of {', '.join(DIALECT_NAMES)}")
        if self.encoding is not None:
            try:
                codecs.lookup(self.encoding)
            except LookupError:
                errors.append(f"encoding: unknown codec {self.encoding!r}")
        return errors

    def check(self) -> TableConfig:
        """Raise ValidationError if any value is invalid, else return self."""
        errors = self.validate()
        if errors:
            raise ValidationError("; ".join(errors))
        return self


def load_config(path: str | Path | None) -> TableConfig:
    """Load a TableConfig from a JSON file.

    Missing or unreadable files fall back to the defaults.  Unknown keys are
    ignored with a warning; invalid values raise ValidationError.
    """
    config = TableConfig()
    if path is None:
        return config

    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data: dict[str, Any] = json.load(f)
    except FileNotFoundError:
        logger.debug("No config file at %s, using defaults", path)
        return config
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", path, e)
        return config

    known = {f.name for f in fields(TableConfig)} - {"clock"}
    for key, value in data.items():
        if key not in known:
            logger.warning("Unknown config key %r in %s", key, path)
            continue
        setattr(config, key, value)

    return config.check()

"""Extract a human-readable unit (school) name from a chat group name."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from deskrelay.core.config import UnitEntry

LOGGER = logging.getLogger(__name__)

UNKNOWN_UNIT = "Unknown School"

EDUCATION_KEYWORDS = ("school", "academy", "college", "vidyalaya")

# Raw group names at least this long are assumed not to be a bare unit name.
MAX_FALLBACK_LENGTH = 30


def _meaningful(candidate: Optional[str]) -> Optional[str]:
    if candidate is None:
        return None
    candidate = candidate.strip()
    return candidate if len(candidate) > 2 else None


def extract_unit_name(
    group_name: Optional[str],
    known_units: Iterable[UnitEntry] = (),
    prefix: str = "SR",
) -> str:
    """Return the unit name using a layered heuristic.

    Order of precedence:
    1. ``PREFIX - Name -`` tag
    2. exact name, then alias, from the known-unit list
    3. ``Name - PREFIX``
    4. ``Name (info)``
    5. education keywords keep the whole group name
    6. short, URL-free group names are used as is, else ``Unknown School``
    """

    if not group_name:
        LOGGER.warning("extract_unit_name called with an empty group name")
        return UNKNOWN_UNIT

    lowered = group_name.lower().strip()
    escaped = re.escape(prefix)
    units = list(known_units)

    tagged = re.search(rf"{escaped}\s*-\s*(.*?)(?:\s*-|$)", group_name, re.IGNORECASE)
    name = _meaningful(tagged.group(1)) if tagged else None
    if name:
        LOGGER.debug("Unit name %r extracted from %s prefix in %r", name, prefix, group_name)
        return name

    for unit in units:
        if unit.name.lower() in lowered:
            LOGGER.debug("Unit name matched exactly: %r in %r", unit.name, group_name)
            return unit.name

    for unit in units:
        for alias in unit.aliases:
            if alias and alias.lower() in lowered:
                LOGGER.debug("Unit name %r matched by alias %r in %r", unit.name, alias, group_name)
                return unit.name

    suffixed = re.search(rf"(.*?)\s*-\s*{escaped}(?:\s*-|$)", group_name, re.IGNORECASE)
    name = _meaningful(suffixed.group(1)) if suffixed else None
    if name:
        LOGGER.debug("Unit name %r extracted from 'Name - %s' in %r", name, prefix, group_name)
        return name

    parenthesised = re.match(r"^([^(]+)\s*\(.*\)$", group_name)
    name = _meaningful(parenthesised.group(1)) if parenthesised else None
    if name:
        LOGGER.debug("Unit name %r extracted from 'Name (info)' in %r", name, group_name)
        return name

    if any(keyword in lowered for keyword in EDUCATION_KEYWORDS):
        return group_name.strip()

    if len(group_name) < MAX_FALLBACK_LENGTH and "http" not in lowered and "www." not in lowered:
        LOGGER.debug("Using group name as unit name (fallback): %r", group_name)
        return group_name.strip()

    LOGGER.warning("No unit name matched for group name %r", group_name)
    return UNKNOWN_UNIT

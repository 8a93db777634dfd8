"""Compile raw tag records into executable matchers.

A compiled tag holds its regular expression, compiled once, and a comparison object
chosen by the tag's compare type. Comparisons are plain frozen dataclasses with an
``evaluate`` method so a compiled tag can be inspected and tested on its own.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import ClassVar, Iterable, List, Optional, Pattern, Union

from src.api.models import Tag
from src.api.schemas.common import CompareType

logger = logging.getLogger(__name__)


class TagCompileError(ValueError):
    """Raised when a tag record cannot be turned into a matcher."""

    def __init__(self, tag: Tag, reason: str):
        super().__init__(f"tag id={tag.id} name={tag.name!r}: {reason}")
        self.tag = tag
        self.reason = reason


def _parse_float(raw: str) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class EqualsComparison:
    """Extracted value must equal the operand exactly (string comparison)."""

    kind: ClassVar[CompareType] = CompareType.eq

    operand: str

    def evaluate(self, value: str) -> bool:
        return value == self.operand


@dataclass(frozen=True)
class _NumericComparison:
    kind: ClassVar[CompareType]

    operand: str
    # None when the operand is not a number; such a comparison never holds.
    threshold: Optional[float]

    @classmethod
    def from_operand(cls, operand: str) -> "_NumericComparison":
        threshold = _parse_float(operand)
        if threshold is None:
            logger.warning("Non-numeric operand %r for '%s' comparison; it will never match", operand, cls.kind.value)
        return cls(operand=operand, threshold=threshold)

    def _holds(self, value: float, threshold: float) -> bool:
        raise NotImplementedError

    def evaluate(self, value: str) -> bool:
        if self.threshold is None:
            return False
        parsed = _parse_float(value)
        if parsed is None:
            logger.warning("Cannot parse extracted value %r as a number for '%s' comparison", value, self.kind.value)
            return False
        return self._holds(parsed, self.threshold)


@dataclass(frozen=True)
class LessThanComparison(_NumericComparison):
    kind: ClassVar[CompareType] = CompareType.lt

    def _holds(self, value: float, threshold: float) -> bool:
        return value < threshold


@dataclass(frozen=True)
class GreaterThanComparison(_NumericComparison):
    kind: ClassVar[CompareType] = CompareType.gt

    def _holds(self, value: float, threshold: float) -> bool:
        return value > threshold


Comparison = Union[EqualsComparison, LessThanComparison, GreaterThanComparison]


@dataclass(frozen=True)
class CompiledTag:
    """A tag ready for evaluation against message bodies."""

    tag: Tag
    pattern: Pattern[str]
    comparison: Comparison

    @property
    def compare_type(self) -> CompareType:
        return self.comparison.kind

    @property
    def is_threshold(self) -> bool:
        return self.comparison.kind.is_threshold

    def extract(self, text: str) -> Optional[str]:
        """Return the capture at the tag's index, or None when there is nothing to compare."""
        found = self.pattern.search(text)
        if found is None:
            return None
        index = self.tag.array_index
        if index < 0 or index > self.pattern.groups:
            return None
        # A group that did not take part in the match yields None.
        return found.group(index)

    def matches(self, text: str) -> bool:
        value = self.extract(text)
        if value is None:
            return False
        return self.comparison.evaluate(value)


# PUBLIC_INTERFACE
def compile_comparison(compare_type: str, operand: str) -> Comparison:
    """Build the comparison for a compare type; raises ValueError for unknown operators."""
    kind = CompareType(compare_type)
    if kind is CompareType.eq:
        return EqualsComparison(operand=operand)
    if kind is CompareType.lt:
        return LessThanComparison.from_operand(operand)
    return GreaterThanComparison.from_operand(operand)


# PUBLIC_INTERFACE
def compile_tag(tag: Tag) -> CompiledTag:
    """Compile one tag record. Raises TagCompileError on a bad operator or pattern."""
    try:
        comparison = compile_comparison(tag.compare_type, tag.value)
    except ValueError:
        raise TagCompileError(tag, f"unknown compare type {tag.compare_type!r}") from None

    try:
        pattern = re.compile(tag.regexp)
    except (re.error, TypeError) as exc:
        raise TagCompileError(tag, f"invalid regexp {tag.regexp!r}: {exc}") from exc

    return CompiledTag(tag=tag, pattern=pattern, comparison=comparison)


# PUBLIC_INTERFACE
def compile_tags(tags: Iterable[Tag]) -> List[CompiledTag]:
    """Compile a batch of tags, logging and skipping the ones that fail. Input order is kept."""
    compiled: List[CompiledTag] = []
    for tag in tags:
        try:
            compiled.append(compile_tag(tag))
        except TagCompileError as exc:
            logger.error("Skipping tag that failed to compile: %s", exc)
    return compiled

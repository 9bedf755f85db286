from __future__ import annotations

from typing import TYPE_CHECKING

from nomnom.config import (
    MATCH_PREVIEW_CHARS,
    SIMPLIFIED_EXTENSIONS,
    SIMPLIFIED_PLACEHOLDER,
    RedactRule,
    TruncateRule,
    UnknownRule,
    extension_of,
)
from nomnom.logging import logger

if TYPE_CHECKING:
    import re
    from collections.abc import Sequence

    from nomnom.config import FilterRule


def describe_match(text: str, match: re.Match[str], *, safe_logging: bool) -> str:
    """Describe a match for the logs.

    With safe logging the description only locates the match; otherwise it
    quotes the matched text, shortened when it is long.

    Args:
        text (str): the text the match was found in
        match (re.Match[str]): the match to describe
        safe_logging (bool): hide the matched text

    Returns:
        str: the location (`[characters S-E]`) or the quoted match
    """
    if safe_logging:
        line_start = text.rfind("\n", 0, match.start()) + 1
        start = match.start() - line_start
        end = match.end() - line_start
        return f"[characters {start + 1}-{end}]"
    found = match.group(0)
    if len(found) > MATCH_PREVIEW_CHARS:
        return found[: MATCH_PREVIEW_CHARS - 3] + "..."
    return found


def line_number(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


class FilterPipeline:
    """Apply an ordered list of redact/truncate rules to file contents.

    Rules run one after another and each sees the output of the previous
    one, so a later rule may match text an earlier rule wrote.
    """

    def __init__(self, rules: Sequence[FilterRule], *, safe_logging: bool = True) -> None:
        self.rules: tuple[FilterRule, ...] = tuple(rules)
        self.safe_logging = safe_logging

    def apply(self, text: str, path: str) -> str:
        """Filter `text`, the content of the file at relative `path`.

        Args:
            text (str): decoded file content
            path (str): path of the file relative to the walked root

        Returns:
            str: the filtered content
        """
        if extension_of(path) in SIMPLIFIED_EXTENSIONS:
            return SIMPLIFIED_PLACEHOLDER

        redactions = 0
        for rule in self.rules:
            if not rule.applies_to(path):
                logger.debug(
                    "Skipping filter for %s: file pattern %r did not match",
                    path,
                    rule.file_pattern.pattern if rule.file_pattern is not None else None,
                )
                continue
            if isinstance(rule, UnknownRule):
                logger.warning("Unknown filter type '%s', skipping rule", rule.kind)
                continue
            text, count = self._apply_rule(rule, text, path)
            if isinstance(rule, RedactRule):
                redactions += count

        if redactions:
            logger.info("Applied %d total redaction(s)", redactions)
        return text

    def _apply_rule(self, rule: RedactRule | TruncateRule, text: str, path: str) -> tuple[str, int]:
        matches = list(rule.pattern.finditer(text))
        if not matches:
            return text, 0

        label = rule.label
        logger.info(
            "Filter applied: %s pattern '%s' matched %d time(s) in %s",
            label,
            rule.pattern.pattern,
            len(matches),
            path,
        )
        for m in matches:
            logger.info(
                "%s match at line %d: '%s'",
                label,
                line_number(text, m.start()),
                describe_match(text, m, safe_logging=self.safe_logging),
            )
        replacement = rule.replacement
        # A callable keeps the replacement literal (no backreference expansion).
        return rule.pattern.sub(lambda _m: replacement, text), len(matches)

"""
Decides whether a normalized endpoint looks like API traffic, using the
include/exclude regular expressions from the settings.
"""
import logging
import re
from functools import lru_cache
from typing import Iterable, Tuple

logger = logging.getLogger("apiscope.classifier")


@lru_cache(maxsize=32)
def compile_patterns(patterns: Tuple[str, ...]) -> Tuple["re.Pattern", ...]:
    """Compile pattern sources case-insensitively, dropping any that fail."""
    compiled = []
    for source in patterns:
        try:
            compiled.append(re.compile(source, re.IGNORECASE))
        except (re.error, TypeError) as e:
            logger.warning(f"Ignoring invalid pattern {source!r}: {e}")
    return tuple(compiled)


class PatternClassifier:
    """Compiled include/exclude matcher set."""

    def __init__(self, include_patterns: Iterable[str] = (), exclude_patterns: Iterable[str] = ()):
        self.include = compile_patterns(tuple(include_patterns))
        self.exclude = compile_patterns(tuple(exclude_patterns))

    def is_api(self, endpoint: str) -> bool:
        target = endpoint or ""
        included = not self.include or any(p.search(target) for p in self.include)
        excluded = any(p.search(target) for p in self.exclude)
        return included and not excluded


@lru_cache(maxsize=8)
def _cached_classifier(include: Tuple[str, ...], exclude: Tuple[str, ...]) -> PatternClassifier:
    return PatternClassifier(include, exclude)


def classifier_for(settings) -> PatternClassifier:
    """Return the classifier for a settings snapshot, reusing it while the patterns are unchanged."""
    return _cached_classifier(tuple(settings.include_patterns), tuple(settings.exclude_patterns))

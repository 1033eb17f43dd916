"""DOM-shape checks that decide whether a student's HTML satisfies a task.

Rules are declarative (see ``ValidationRule``) so the task file stays readable
for teachers. Each rule kind maps to a small predicate over the parsed
document:

    tag <name>                       element exists
    tag_count <name> <min>           at least ``min`` elements
    attribute <tag> <attr> [value]   element carries the attribute (and value)
    text <tag> <substring>           element whose text contains the substring
    nested <parent> <child>          child element somewhere inside parent
    contains <substring>             raw source contains the substring
    regex <pattern>                  case-insensitive search over the raw source
"""

from __future__ import annotations

from collections.abc import Callable
import re

from bs4 import BeautifulSoup

from codeshare_app.core.models import RuleResult, Task, ValidationResult, ValidationRule


class RuleDefinitionError(ValueError):
    """Raised when a rule names an unknown kind or carries bad arguments."""


def _has_tag(soup: BeautifulSoup, source: str, name: str) -> bool:
    return soup.find(name.lower()) is not None


def _tag_count(soup: BeautifulSoup, source: str, name: str, minimum: str) -> bool:
    return len(soup.find_all(name.lower())) >= int(minimum)


def _attribute(soup: BeautifulSoup, source: str, name: str, attr: str, value: str | None = None) -> bool:
    for element in soup.find_all(name.lower()):
        if not element.has_attr(attr.lower()):
            continue
        if value is None:
            return True
        actual = element.get(attr.lower())
        if isinstance(actual, list):
            if value in actual or " ".join(actual) == value:
                return True
        elif actual == value:
            return True
    return False


def _text(soup: BeautifulSoup, source: str, name: str, substring: str) -> bool:
    wanted = substring.casefold()
    return any(wanted in element.get_text(" ", strip=True).casefold() for element in soup.find_all(name.lower()))


def _nested(soup: BeautifulSoup, source: str, parent: str, child: str) -> bool:
    return any(element.find(child.lower()) is not None for element in soup.find_all(parent.lower()))


def _contains(soup: BeautifulSoup, source: str, substring: str) -> bool:
    return substring in source


def _regex(soup: BeautifulSoup, source: str, pattern: str) -> bool:
    return re.search(pattern, source, re.IGNORECASE | re.DOTALL) is not None


# kind -> (predicate, minimum args, maximum args, free-text tail)
_RULE_KINDS: dict[str, tuple[Callable[..., bool], int, int, bool]] = {
    "tag": (_has_tag, 1, 1, False),
    "tag_count": (_tag_count, 2, 2, False),
    "attribute": (_attribute, 2, 3, False),
    "text": (_text, 2, 2, True),
    "nested": (_nested, 2, 2, False),
    "contains": (_contains, 1, 1, True),
    "regex": (_regex, 1, 1, True),
}


def known_rule_kinds() -> list[str]:
    return sorted(_RULE_KINDS)


def parse_rule_arguments(kind: str, raw_args: str) -> tuple[str, ...]:
    """Split a rule's argument text according to its kind.

    Kinds with a free-text tail keep everything after the fixed arguments as
    one argument, spaces included.
    """
    if kind not in _RULE_KINDS:
        raise RuleDefinitionError(f"Unknown rule kind {kind!r}; expected one of {', '.join(known_rule_kinds())}.")
    _, minimum, maximum, free_tail = _RULE_KINDS[kind]
    raw_args = raw_args.strip()
    if free_tail:
        fixed = minimum - 1
        parts = raw_args.split(maxsplit=fixed) if raw_args else []
    else:
        parts = raw_args.split()
    if not minimum <= len(parts) <= maximum:
        raise RuleDefinitionError(f"Rule {kind!r} takes {minimum}-{maximum} arguments, got {len(parts)}.")
    check_rule(ValidationRule(kind=kind, args=tuple(parts), pass_message="", fail_message=""))
    return tuple(parts)


def check_rule(rule: ValidationRule) -> None:
    if rule.kind not in _RULE_KINDS:
        raise RuleDefinitionError(f"Unknown rule kind {rule.kind!r}.")
    if rule.kind == "tag_count":
        try:
            minimum = int(rule.args[1])
        except ValueError as exc:
            raise RuleDefinitionError(f"tag_count needs an integer minimum, got {rule.args[1]!r}.") from exc
        if minimum < 1:
            raise RuleDefinitionError("tag_count minimum must be at least 1.")
    if rule.kind == "regex":
        try:
            re.compile(rule.args[0])
        except re.error as exc:
            raise RuleDefinitionError(f"Invalid regex {rule.args[0]!r}: {exc}") from exc


def evaluate_rule(rule: ValidationRule, soup: BeautifulSoup, source: str) -> RuleResult:
    predicate = _RULE_KINDS[rule.kind][0]
    passed = bool(predicate(soup, source, *rule.args))
    return RuleResult(passed=passed, message=rule.pass_message if passed else rule.fail_message)


def validate_code(task: Task, code: str) -> ValidationResult:
    """Run every rule of ``task`` against ``code`` in order."""
    soup = BeautifulSoup(code, "html.parser")
    results = tuple(evaluate_rule(rule, soup, code) for rule in task.validation_rules)
    total = len(results)
    passed_count = sum(1 for result in results if result.passed)
    score = 100 if total == 0 else round(100 * passed_count / total)
    return ValidationResult(passed=passed_count == total, score=score, results=results)

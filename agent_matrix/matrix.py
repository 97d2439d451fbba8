"""Expansion of declared variants and applications into test cases."""

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from fnmatch import fnmatchcase

from agent_matrix.models.definition import ServerVariant, TestApplication


@dataclass(frozen=True, kw_only=True)
class TestCase:
    """One (variant, application) combination of the matrix."""

    __test__ = False

    variant: ServerVariant
    application: TestApplication

    @property
    def case_id(self) -> str:
        """Label attributing results to the variant and application."""
        return f"{self.variant.id} / {self.application.id}"


@dataclass(frozen=True, kw_only=True)
class VariantGroup:
    """Cases sharing one runtime session, in execution order."""

    variant: ServerVariant
    cases: Sequence[TestCase]


def expand_matrix(
    variants: Sequence[ServerVariant],
    applications: Sequence[TestApplication],
) -> Sequence[VariantGroup]:
    """Build the ordered case groups for the given variants and applications.

    Cases follow variant declaration order, then application declaration
    order. Applications excluded for a variant produce no case; a variant
    left without cases produces no group.

    Raises:
        ValueError: If variant or application identities are not unique

    """
    _check_unique("variant", [variant.id for variant in variants])
    _check_unique("application", [app.id for app in applications])

    groups: list[VariantGroup] = []
    for variant in variants:
        cases = [
            TestCase(variant=variant, application=application)
            for application in applications
            if application.applies_to(variant)
        ]
        if cases:
            groups.append(VariantGroup(variant=variant, cases=cases))
    return groups


def select(identities: Sequence[str], patterns: Sequence[str]) -> set[str]:
    """Return the identities matching any of the patterns (all when empty)."""
    if not patterns:
        return set(identities)
    return {
        identity
        for identity in identities
        if any(fnmatchcase(identity, pattern) for pattern in patterns)
    }


def _check_unique(kind: str, identities: Sequence[str]) -> None:
    duplicates = sorted(i for i, count in Counter(identities).items() if count > 1)
    if duplicates:
        raise ValueError(f"Duplicate {kind} id(s): {', '.join(duplicates)}")

"""
Query Substitutions

Expands a query template with ``{name}`` placeholders into every concrete
query allowed by the substitution value lists.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class ResolvedQuery:
    """A concrete query and the substitution values that produced it."""

    text: str
    parameters: Dict[str, str] = field(default_factory=dict)


def placeholder(name: str) -> str:
    return "{" + name + "}"


class SubstitutionExpander:
    """
    Cartesian expansion of a template over ordered substitution variables.

    Variables are processed in order. A variable whose placeholder does not
    occur in the partially substituted template is skipped, so unused
    variables never multiply the result. Every occurrence of a placeholder
    is replaced by the chosen value.

    The expansion is an explicit-stack depth-first walk yielding results
    lazily in the same order a recursive walk would.
    """

    def __init__(self, variables: Mapping[str, Sequence[str]]):
        self._variables: List[Tuple[str, List[str]]] = [
            (name, list(values)) for name, values in variables.items()
        ]

    def expand(self, template: str) -> Iterator[ResolvedQuery]:
        stack: List[Tuple[int, str, Dict[str, str]]] = [(0, template, {})]
        depth = len(self._variables)

        while stack:
            index, query, assignment = stack.pop()

            # Skip variables the current template does not reference.
            while index < depth and placeholder(self._variables[index][0]) not in query:
                index += 1

            if index == depth:
                yield ResolvedQuery(text=query, parameters=assignment)
                continue

            name, values = self._variables[index]
            token = placeholder(name)
            # Reversed push keeps value order on pop.
            for value in reversed(values):
                stack.append(
                    (index + 1, query.replace(token, value), {**assignment, name: value})
                )

    def expand_all(self, templates: Iterable[str]) -> List[ResolvedQuery]:
        result: List[ResolvedQuery] = []
        for template in templates:
            result.extend(self.expand(template))
        return result


def expand(template: str, variables: Mapping[str, Sequence[str]]) -> List[ResolvedQuery]:
    """Convenience function returning every resolved query for one template."""
    return list(SubstitutionExpander(variables).expand(template))

"""Conditional field visibility.

A field may declare a ``VisibilityRule``: the names of the sibling fields
it reads and a predicate over their values. ``resolve_visibility`` evaluates
every rule in one pass over a snapshot of the form's values. It is a pure
function: it never looks at focus or navigation state and has no side
effects, so calling it twice on the same values gives the same answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Mapping

if TYPE_CHECKING:
    from sshm.tui.models.field import Field

__all__ = ["VisibilityRule", "resolve_visibility", "visible_when_equals"]


@dataclass(frozen=True)
class VisibilityRule:
    """Show a field only while ``predicate`` holds for its dependencies.

    Attributes:
        depends_on: Names of the fields the predicate reads
        predicate: Receives a mapping restricted to ``depends_on``
    """

    depends_on: tuple[str, ...]
    predicate: Callable[[Mapping[str, str]], bool]

    def evaluate(self, values: Mapping[str, str]) -> bool:
        scoped = {name: values.get(name, "") for name in self.depends_on}
        return bool(self.predicate(scoped))


def visible_when_equals(field_name: str, *accepted: str) -> VisibilityRule:
    """Rule: visible iff ``field_name`` currently equals one of ``accepted``.

    Example:
        Field("password", kind=FieldKind.SECRET,
              visible_when=visible_when_equals("auth_type", "password"))
    """
    allowed = frozenset(accepted)
    return VisibilityRule(
        depends_on=(field_name,),
        predicate=lambda values: values[field_name] in allowed,
    )


def resolve_visibility(
    fields: Iterable["Field"], values: Mapping[str, str]
) -> dict[str, bool]:
    """Compute the visibility of every field from the current values.

    Args:
        fields: Registered fields
        values: Current value of every field, hidden ones included

    Returns:
        Field name to visibility; fields without a rule are always visible
    """
    return {
        f.name: f.visible_when.evaluate(values) if f.visible_when is not None else True
        for f in fields
    }

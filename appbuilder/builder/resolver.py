"""Order planned components so every one follows its internal dependencies.

The resolver runs repeated greedy passes over the declaration order.  A
component is placed once each of its dependencies is either already placed
or external (a name that is not a planned component, e.g. an npm package).
Placements are visible to later components in the same pass.

A pass that places nothing means the remainder is cyclic; a pass ceiling
bounds the loop independently of that check.
"""

from __future__ import annotations

from appbuilder.parser.models import ComponentSpec


class CyclicDependency(Exception):
    """Some components can never be placed because they depend on each other."""

    def __init__(self, unresolved: list[str]) -> None:
        self.unresolved = unresolved
        super().__init__(
            f"Circular or unsatisfiable dependencies among: {', '.join(unresolved)}"
        )


def internal_dependencies(spec: ComponentSpec, known: set[str]) -> list[str]:
    """Dependencies of *spec* that name planned components."""
    return [dep for dep in spec.depends_on if dep in known]


def external_dependencies(spec: ComponentSpec, known: set[str]) -> list[str]:
    """Dependencies of *spec* that are not planned components."""
    return [dep for dep in spec.depends_on if dep not in known]


class DependencyResolver:
    """Linearizes a component graph.

    Args:
        max_passes: Pass ceiling. ``None`` means twice the component count.
    """

    def __init__(self, max_passes: int | None = None) -> None:
        self.max_passes = max_passes

    def resolve(self, components: list[ComponentSpec]) -> list[ComponentSpec]:
        """Return *components* in dependency-safe order.

        Raises:
            ValueError: Two components share a name.
            CyclicDependency: The remaining components cannot be placed.
        """
        known = {c.name for c in components}
        if len(known) != len(components):
            names = [c.name for c in components]
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate component names: {', '.join(dupes)}")

        ceiling = self.max_passes if self.max_passes is not None else 2 * len(components)
        ordered: list[ComponentSpec] = []
        placed: set[str] = set()
        remaining = list(components)
        passes = 0

        while remaining:
            if passes >= ceiling:
                raise CyclicDependency([c.name for c in remaining])
            passes += 1

            still_waiting: list[ComponentSpec] = []
            for spec in remaining:
                if all(dep in placed for dep in internal_dependencies(spec, known)):
                    ordered.append(spec)
                    placed.add(spec.name)
                else:
                    still_waiting.append(spec)

            if len(still_waiting) == len(remaining):
                raise CyclicDependency([c.name for c in still_waiting])
            remaining = still_waiting

        return ordered

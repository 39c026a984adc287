"""State listing output rendering."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import typer

from saas_provisioner.core.secret import redact

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from saas_provisioner.core.state import ResourceInstance


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


def format_scope_list(counts: Sequence[tuple[str, int]], *, color: bool = True) -> str:
    """One line per scope: name and number of recorded resources."""
    s = styler(color)
    if not counts:
        return "No scopes recorded."
    width = max(len(name) for name, _ in counts)
    return "\n".join(
        f"{s(name.ljust(width), bold=True)}  {_plural(n, 'resource')}" for name, n in counts
    )


def _format_output(output: dict[str, Any]) -> list[str]:
    masked = redact(output)
    if not masked:
        return []
    width = max(len(k) for k in masked)
    return [
        f"      {k.ljust(width)} = {json.dumps(v, default=str, sort_keys=True)}"
        for k, v in sorted(masked.items())
    ]


def format_instances(
    scope: str, instances: Sequence[ResourceInstance], *, color: bool = True
) -> str:
    """Resources of *scope* in creation order, secrets masked."""
    s = styler(color)
    if not instances:
        return f"Scope '{scope}' has no recorded resources."

    lines = [s(f"Scope {scope}", bold=True), ""]
    for inst in instances:
        header = f"  #{inst.sequence} {inst.kind} {s(inst.logical_id, fg='cyan')}"
        lines.append(header)
        if inst.dependencies:
            lines.append(f"      depends on: {', '.join(inst.dependencies)}")
        lines.extend(_format_output(inst.output))
    lines.append("")
    lines.append(_plural(len(instances), "resource"))
    return "\n".join(lines)

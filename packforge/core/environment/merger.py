from __future__ import annotations

from typing import Dict, Iterable, Optional

from packforge.core.environment.models import EnvironmentOperation, EnvironmentSnapshot


def _apply_one(values: Dict[str, str], delimiters: Dict[str, str], op: EnvironmentOperation) -> None:
    name = op.name

    if op.kind == "delimiter":
        delimiters[name] = op.delimiter if op.delimiter is not None else op.value
        return

    if op.kind == "override":
        values[name] = op.value
        return

    if op.kind == "default":
        if name not in values:
            values[name] = op.value
        return

    # prepend / append
    if op.delimiter is not None:
        delimiters[name] = op.delimiter
    delim = delimiters.get(name, "")

    existing = values.get(name)
    if not existing:
        values[name] = op.value
    elif op.kind == "prepend":
        values[name] = op.value + delim + existing
    else:
        values[name] = existing + delim + op.value


class EnvironmentMerger:
    """
    Folds environment operations into a snapshot.

    Precedence:
      override   replaces whatever an earlier module set
      default    only sets a variable nothing earlier in this run has set
      prepend/append join with the op's delimiter, else the variable's
                 established delimiter; duplicates are kept
    """

    def apply(
        self,
        snapshot: EnvironmentSnapshot,
        operations: Iterable[EnvironmentOperation],
        *,
        owner: str = "",
    ) -> EnvironmentSnapshot:
        values = dict(snapshot.values)
        delimiters = dict(snapshot.delimiters)
        applied = list(snapshot.log)

        for op in operations:
            _apply_one(values, delimiters, op)
            applied.append((owner, op))

        return EnvironmentSnapshot(values=values, delimiters=delimiters, log=tuple(applied))

    def fold(
        self,
        layers: Iterable,
        snapshot: Optional[EnvironmentSnapshot] = None,
    ) -> EnvironmentSnapshot:
        out = snapshot or EnvironmentSnapshot()
        for layer in layers:
            out = self.apply(out, layer.env, owner=layer.owner)
        return out


def apply(snapshot: EnvironmentSnapshot, operations: Iterable[EnvironmentOperation]) -> EnvironmentSnapshot:
    return EnvironmentMerger().apply(snapshot, operations)

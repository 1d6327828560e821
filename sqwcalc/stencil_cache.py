"""
Evaluation of expensive per-stencil quantities once per run of equal keys.

Batches of queries along a dense path usually land on the same stencil many
times in a row. `group_runs` finds the maximal runs of equal keys and
`broadcast_runs` evaluates a function once per run. Nothing here knows about
the physics; keys and the computation are supplied by the caller.
"""
from typing import Callable, Hashable, Iterator, List, Sequence, Tuple, TypeVar

T = TypeVar("T")


def group_runs(keys: Sequence[Hashable]) -> List[Tuple[Hashable, slice]]:
    """Maximal runs of consecutive equal keys as ``(key, slice)`` in input order."""
    runs: List[Tuple[Hashable, slice]] = []
    start = 0
    for i in range(1, len(keys) + 1):
        if i == len(keys) or keys[i] != keys[start]:
            runs.append((keys[start], slice(start, i)))
            start = i
    return runs


def broadcast_runs(
    keys: Sequence[Hashable], compute: Callable[[int], T]
) -> Iterator[Tuple[slice, T]]:
    """
    Yield ``(run, value)`` for every maximal run of equal keys.

    ``compute`` receives the index of the first item of the run and is called
    exactly once per run; the value applies to every item in the slice.
    """
    for _, run in group_runs(keys):
        yield run, compute(run.start)

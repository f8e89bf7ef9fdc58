"""Round-robin chunk quota across sources.

Each round takes the next untaken chunk from every source that still has one,
in the mapping's iteration order, until the quota is met or every source is
exhausted. With N sources and quota Q every source gets floor(Q/N) chunks
(one more for the first Q mod N sources) unless it runs out, in which case
the remaining sources absorb its shortfall.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from deepread.ingest.models import Chunk


def distribute(chunks_by_source: Mapping[str, Sequence[Chunk]], total_quota: int) -> list[Chunk]:
    """Return ``min(total_quota, available)`` chunks in round-robin order.

    Each source's sequence must already be in that source's relevance order.
    """
    if total_quota < 0:
        raise ValueError("total_quota must be >= 0")

    queues = [list(chunks) for chunks in chunks_by_source.values() if chunks]
    taken: list[Chunk] = []
    position = 0
    while len(taken) < total_quota:
        progressed = False
        for queue in queues:
            if position < len(queue):
                taken.append(queue[position])
                progressed = True
                if len(taken) == total_quota:
                    break
        if not progressed:
            break
        position += 1
    return taken

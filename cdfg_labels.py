#!/usr/bin/env python3
"""
Basic Block Identity and Label Resolution

Every block of a run gets two names:
- a block id: a sequential integer assigned the first time the block is seen,
  used to build DOT node identifiers (Node<id>)
- a display label: the block's own name, or a synthetic BB_<n> for anonymous
  blocks

Both are memoized per block identity, so asking again for the same block never
produces a different answer. One resolver covers a whole run; synthetic
numbering is not restarted per function.

A synthetic label never equals a label already in use. Names reserved up front
(the names of every named block of the module) are skipped over, so an
anonymous block next to a block literally named "BB_0" becomes "BB_1".
"""

from typing import Any, Dict, Iterable, Optional, Set

from cdfg_ir import BlockFlow, IRView


UNDEFINED_LABEL = "undefined"
SYNTHETIC_LABEL_PREFIX = "BB_"


class BlockLabelResolver:
    """
    Resolves blocks to stable ids and display labels for one run.

    Args:
        flow: Provider used to read block names (defaults to IRView)
        prefix: Prefix of synthetic labels
        start: First synthetic label number
    """

    def __init__(self, flow: Optional[BlockFlow] = None,
                 prefix: str = SYNTHETIC_LABEL_PREFIX, start: int = 0):
        self.flow = flow or IRView()
        self.prefix = prefix
        self.start = start
        self.counter = start
        self._labels: Dict[Any, str] = {}
        self._ids: Dict[Any, int] = {}
        self._taken: Set[str] = set()
        self._synthetic = 0

    def reserve(self, names: Iterable[str]):
        """Mark labels as taken so no anonymous block is given one of them."""
        self._taken.update(name for name in names if name)

    def resolve(self, block: Any) -> str:
        """Return the display label of a block."""
        if block is None:
            return UNDEFINED_LABEL

        label = self._labels.get(block)
        if label is not None:
            return label

        name = self.flow.block_name(block)
        if name:
            label = name
        else:
            label = self._next_synthetic()
        self._taken.add(label)
        self._labels[block] = label
        return label

    def _next_synthetic(self) -> str:
        label = f"{self.prefix}{self.counter}"
        self.counter += 1
        while label in self._taken:
            label = f"{self.prefix}{self.counter}"
            self.counter += 1
        self._synthetic += 1
        return label

    def block_id(self, block: Any) -> int:
        """Return the sequential id of a block, assigning the next one on first sight."""
        block_id = self._ids.get(block)
        if block_id is None:
            block_id = len(self._ids)
            self._ids[block] = block_id
        return block_id

    def synthetic_count(self) -> int:
        """Number of anonymous blocks labeled so far."""
        return self._synthetic

    def reset(self):
        """Forget every assignment and reservation and restart numbering."""
        self.counter = self.start
        self._synthetic = 0
        self._labels.clear()
        self._ids.clear()
        self._taken.clear()

    def __len__(self):
        return len(self._labels)

    def __contains__(self, block: Any) -> bool:
        return block in self._labels

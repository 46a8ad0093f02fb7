# SPDX-License-Identifier: Apache-2.0
"""Longest-common-prefix matching between token sequences."""

from typing import Sequence


def common_prefix_length(a: Sequence[int], b: Sequence[int]) -> int:
    """
    Count the leading tokens that are equal at the same index in both sequences.

    Args:
        a: First token sequence.
        b: Second token sequence.

    Returns:
        Length of the shared prefix, at most ``min(len(a), len(b))``.
    """
    length = min(len(a), len(b))
    for i in range(length):
        if a[i] != b[i]:
            return i
    return length

"""
Tagged data stream used to verify multi-gigabyte transfers

The stream is a sequence of one-megabyte segments. The first byte of every
segment is a tag equal to the number of whole gigabytes already transferred,
modulo 255. Only the tag is checked, so neither side ever holds more than one
segment in memory.
"""

from typing import Callable, Iterator, Optional

from .errors import StreamTruncation, TagMismatch

ONE_MB = 1_000_000
ONE_GB = 1_000_000_000
SEGMENTS_PER_GB = ONE_GB // ONE_MB
TAG_MODULUS = 255


def tag_for_segment(group_index: int) -> int:
    """Tag byte for every segment of the given gigabyte group"""
    if group_index < 0:
        raise ValueError(f"group index must be non-negative, got {group_index}")
    return group_index % TAG_MODULUS


def iter_segment_tags(groups: int, segments_per_group: int = SEGMENTS_PER_GB) -> Iterator[int]:
    """
    Yield the expected tag of every segment of a transfer

    Args:
        groups: Number of gigabyte groups in the transfer
        segments_per_group: Segments per group (1000 for real transfers)
    """
    for group_index in range(groups):
        tag = tag_for_segment(group_index)
        for _ in range(segments_per_group):
            yield tag


class TaggedStreamCodec:
    """Generate and verify the tagged bulk-transfer stream"""

    def __init__(self, segment_size: int = ONE_MB, segments_per_group: int = SEGMENTS_PER_GB):
        """
        Args:
            segment_size: Bytes per segment
            segments_per_group: Segments that make up one tag group
        """
        if segment_size < 1:
            raise ValueError("segment size must be at least one byte")
        if segments_per_group < 1:
            raise ValueError("a group needs at least one segment")
        self.segment_size = segment_size
        self.segments_per_group = segments_per_group

    @property
    def group_size(self) -> int:
        return self.segment_size * self.segments_per_group

    def total_segments(self, groups: int) -> int:
        return groups * self.segments_per_group

    def generate(self, groups: int, write: Callable[[bytes], None],
                 on_group: Optional[Callable[[int], None]] = None) -> int:
        """
        Write the tagged stream

        Args:
            groups: Number of tag groups to emit
            write: Callable that writes one segment to the peer
            on_group: Called with the group index before the group's first segment

        Returns:
            Number of segments written
        """
        buffer = bytearray(self.segment_size)
        written = 0
        for group_index in range(groups):
            if on_group is not None:
                on_group(group_index)
            buffer[0] = tag_for_segment(group_index)
            for _ in range(self.segments_per_group):
                write(buffer)
                written += 1
        return written

    def verify(self, groups: int, read_exact: Callable[[int], bytes],
               on_group: Optional[Callable[[int], None]] = None) -> int:
        """
        Read and check the tagged stream

        Args:
            groups: Number of tag groups expected
            read_exact: Callable returning ``n`` bytes, or fewer at end of stream
            on_group: Called with the group index before the group's first segment

        Returns:
            Number of segments verified

        Raises:
            StreamTruncation: The stream ended inside or before a segment
            TagMismatch: A segment carried the wrong tag
        """
        segment = 0
        for group_index in range(groups):
            if on_group is not None:
                on_group(group_index)
            expected = tag_for_segment(group_index)
            for _ in range(self.segments_per_group):
                offset = segment * self.segment_size
                data = read_exact(self.segment_size)
                if len(data) != self.segment_size:
                    raise StreamTruncation(segment, offset, len(data))
                if data[0] != expected:
                    raise TagMismatch(expected, data[0], segment, offset)
                segment += 1
        return segment

    def __repr__(self):
        return f"TaggedStreamCodec(segment_size={self.segment_size}, segments_per_group={self.segments_per_group})"

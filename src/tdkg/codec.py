"""Fixed-layout binary codec for messages and session state.

Integers are big-endian; points and scalars use the group's fixed-size
encodings; variable-length fields carry a u32 length prefix. Decoding
is strict: trailing bytes, truncation and out-of-range values raise
InvalidEncoding.
"""

import struct

from tdkg.errors import InvalidEncoding
from tdkg.group import Group, default_group


class Writer:
    def __init__(self, group: Group = None):
        self.group = group or default_group()
        self._parts = []

    def u8(self, value: int) -> 'Writer':
        self._parts.append(struct.pack('>B', value))
        return self

    def u32(self, value: int) -> 'Writer':
        self._parts.append(struct.pack('>I', value))
        return self

    def boolean(self, value: bool) -> 'Writer':
        return self.u8(1 if value else 0)

    def raw(self, data: bytes) -> 'Writer':
        self._parts.append(bytes(data))
        return self

    def var_bytes(self, data: bytes) -> 'Writer':
        self.u32(len(data))
        return self.raw(data)

    def scalar(self, value: int) -> 'Writer':
        return self.raw(self.group.encode_scalar(value))

    def point(self, point) -> 'Writer':
        return self.raw(self.group.encode_point(point))

    def points(self, points) -> 'Writer':
        points = list(points)
        self.u32(len(points))
        for p in points:
            self.point(p)
        return self

    def u32_list(self, values) -> 'Writer':
        values = list(values)
        self.u32(len(values))
        for v in values:
            self.u32(v)
        return self

    def getvalue(self) -> bytes:
        return b''.join(self._parts)


class Reader:
    def __init__(self, data: bytes, group: Group = None):
        self.group = group or default_group()
        self._data = bytes(data)
        self._pos = 0

    def _take(self, n: int) -> bytes:
        if n < 0 or self._pos + n > len(self._data):
            raise InvalidEncoding(f"Truncated input: need {n} bytes at offset {self._pos}")
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def u8(self) -> int:
        return struct.unpack('>B', self._take(1))[0]

    def u32(self) -> int:
        return struct.unpack('>I', self._take(4))[0]

    def boolean(self) -> bool:
        v = self.u8()
        if v not in (0, 1):
            raise InvalidEncoding(f"Invalid boolean byte {v}")
        return v == 1

    def raw(self, n: int) -> bytes:
        return self._take(n)

    def var_bytes(self) -> bytes:
        return self._take(self.u32())

    def scalar(self) -> int:
        return self.group.decode_scalar(self._take(self.group.scalar_size))

    def point(self):
        return self.group.decode_point(self._take(self.group.point_size))

    def points(self) -> tuple:
        count = self.u32()
        self._check_count(count, self.group.point_size)
        return tuple(self.point() for _ in range(count))

    def u32_list(self) -> tuple:
        count = self.u32()
        self._check_count(count, 4)
        return tuple(self.u32() for _ in range(count))

    def _check_count(self, count: int, item_size: int):
        if count * item_size > len(self._data) - self._pos:
            raise InvalidEncoding(f"Declared {count} items exceed remaining input")

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def finish(self):
        if self.remaining:
            raise InvalidEncoding(f"{self.remaining} trailing bytes")

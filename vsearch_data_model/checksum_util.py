import hashlib
import json
import struct
import zlib
from typing import Any, Callable, Dict, Iterable, Union

import numpy as np

ChecksumFunc = Callable[[bytes], str]

_HASHLIB_NAMES = ('md5', 'sha1', 'sha256', 'sha512', 'blake2b')


def _crc32(data: bytes) -> str:
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"


def resolve_checksum(algorithm: Union[str, ChecksumFunc]) -> ChecksumFunc:
    """
    Turn an algorithm name (``crc32`` or a hashlib digest such as ``sha256``)
    into a ``bytes -> hex string`` function. Callables are returned as is.
    """
    if callable(algorithm):
        return algorithm
    name = algorithm.lower()
    if name == 'crc32':
        return _crc32
    if name not in _HASHLIB_NAMES and name not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    return lambda data: hashlib.new(name, data).hexdigest()


def _encode_extra(value: Any):
    if isinstance(value, np.ndarray):
        return {"__ndarray__": value.tobytes().hex(), "dtype": str(value.dtype)}
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": bytes(value).hex()}
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, np.generic):
        return value.item()
    return repr(value)


def canonical_bytes(value: Any) -> bytes:
    """Stable encoding of a document value: sorted-key JSON, with blobs and arrays hex encoded."""
    return json.dumps(value, sort_keys=True, default=_encode_extra).encode('utf-8')


def checksum_of(algorithm: Union[str, ChecksumFunc], parts: Iterable[bytes]) -> str:
    """
    Checksum of a sequence of byte parts. Each part is length prefixed so
    that moving bytes from one part to the next changes the result.
    """
    framed = b"".join(struct.pack(">I", len(p)) + p for p in parts)
    return resolve_checksum(algorithm)(framed)

"""
SCALE encoding for contract constructor/message arguments and return values.
"""
from ..crypto import from_hex

_INT_WIDTHS = {
    'u8': 1, 'u16': 2, 'u32': 4, 'u64': 8, 'u128': 16,
    'i8': 1, 'i16': 2, 'i32': 4, 'i64': 8, 'i128': 16,
}

# Display names used by contract metadata for well-known aliases.
_ALIASES = {
    'Balance': 'u128',
    'BlockNumber': 'u32',
    'Timestamp': 'u64',
    'Vec<u8>': 'bytes',
    'String': 'str',
}

_FIXED_32 = ('AccountId', 'Hash')


def canonical_type(type_name: str) -> str:
    return _ALIASES.get(type_name, type_name)


def encode_compact(value: int) -> bytes:
    """Encode a non-negative integer in SCALE compact form."""
    if value < 0:
        raise ValueError("Compact integers must be non-negative")
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return ((value << 2) | 0b01).to_bytes(2, 'little')
    if value < 1 << 30:
        return ((value << 2) | 0b10).to_bytes(4, 'little')

    length = (value.bit_length() + 7) // 8
    if length > 67:
        raise ValueError("Compact integer too large")
    return bytes([((length - 4) << 2) | 0b11]) + value.to_bytes(length, 'little')


def decode_compact(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode a SCALE compact integer.
    Returns a tuple of (value, next_offset).
    """
    if offset >= len(data):
        raise ValueError("Unexpected end of data")
    mode = data[offset] & 0b11

    if mode == 0b00:
        return data[offset] >> 2, offset + 1
    if mode == 0b01:
        return int.from_bytes(_take(data, offset, 2), 'little') >> 2, offset + 2
    if mode == 0b10:
        return int.from_bytes(_take(data, offset, 4), 'little') >> 2, offset + 4

    length = (data[offset] >> 2) + 4
    raw = _take(data, offset + 1, length)
    return int.from_bytes(raw, 'little'), offset + 1 + length


def _take(data: bytes, offset: int, length: int) -> bytes:
    if offset + length > len(data):
        raise ValueError("Unexpected end of data")
    return data[offset:offset + length]


def _as_bytes(value) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return from_hex(value)
    raise ValueError(f"Expected bytes or hex string, got {type(value).__name__}")


def encode_value(type_name: str, value) -> bytes:
    """Encode a single value of the given metadata type."""
    type_name = canonical_type(type_name)

    if type_name in _INT_WIDTHS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{type_name} requires an integer, got {value!r}")
        signed = type_name.startswith('i')
        try:
            return value.to_bytes(_INT_WIDTHS[type_name], 'little', signed=signed)
        except OverflowError as e:
            raise ValueError(f"{value} does not fit in {type_name}") from e

    if type_name == 'bool':
        if not isinstance(value, bool):
            raise ValueError(f"bool requires True or False, got {value!r}")
        return b'\x01' if value else b'\x00'

    if type_name in _FIXED_32:
        raw = _as_bytes(value)
        if len(raw) != 32:
            raise ValueError(f"{type_name} must be 32 bytes, got {len(raw)}")
        return raw

    if type_name == 'bytes':
        raw = _as_bytes(value)
        return encode_compact(len(raw)) + raw

    if type_name == 'str':
        raw = value.encode('utf-8')
        return encode_compact(len(raw)) + raw

    if type_name.startswith('Compact'):
        return encode_compact(value)

    raise ValueError(f"Unsupported type: {type_name}")


def decode_value(type_name: str, data: bytes, offset: int = 0):
    """
    Decode a single value of the given metadata type.
    Returns a tuple of (value, next_offset).
    """
    type_name = canonical_type(type_name)

    if type_name in _INT_WIDTHS:
        width = _INT_WIDTHS[type_name]
        raw = _take(data, offset, width)
        return int.from_bytes(raw, 'little', signed=type_name.startswith('i')), offset + width

    if type_name == 'bool':
        raw = _take(data, offset, 1)
        if raw not in (b'\x00', b'\x01'):
            raise ValueError(f"Invalid bool byte: {raw.hex()}")
        return raw == b'\x01', offset + 1

    if type_name in _FIXED_32:
        return "0x" + _take(data, offset, 32).hex(), offset + 32

    if type_name in ('bytes', 'str'):
        length, offset = decode_compact(data, offset)
        raw = _take(data, offset, length)
        value = raw.decode('utf-8') if type_name == 'str' else raw
        return value, offset + length

    if type_name.startswith('Compact'):
        return decode_compact(data, offset)

    raise ValueError(f"Unsupported type: {type_name}")


def encode_arguments(types: list[str], values: list) -> bytes:
    """Encode positional arguments in order."""
    if len(types) != len(values):
        raise ValueError(f"Expected {len(types)} arguments, got {len(values)}")
    return b''.join(encode_value(t, v) for t, v in zip(types, values))

"""
Low-level payload codecs: CRC32 verification and binary16 -> binary32 conversion.

Both are numba kernels, bit-exact, and they release the GIL,
so bricks can be decoded from a thread pool.
"""
import numpy as np
from numba import jit

CRC32_POLYNOMIAL = 0xEDB88320   # ISO-3309 / zlib, reflected
CRC32_INITIAL = 0xFFFFFFFF
CRC32_FINAL_XOR = 0xFFFFFFFF


def _make_crc32_table():
    table = np.zeros(256, dtype=np.uint32)
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = (crc >> 1) ^ (CRC32_POLYNOMIAL if (crc & 1) else 0)
        table[i] = crc
    return table

CRC32_TABLE = _make_crc32_table()


@jit(nopython=True, nogil=True, cache=True)
def _crc32_update(table, data, crc):
    for i in range(data.shape[0]):
        crc = table[(crc ^ data[i]) & 0xFF] ^ (crc >> 8)
    return crc


def crc32(data):
    """
    CRC32 of a bytes-like object, using the ISO-3309 (zlib) convention:
    reflected polynomial 0xEDB88320, initial register 0xFFFFFFFF,
    final XOR 0xFFFFFFFF, one byte at a time via a 256-entry table.

    Returns an unsigned int in [0, 2**32).

    >>> crc32(b'')
    0
    >>> hex(crc32(b'123456789'))
    '0xcbf43926'
    """
    buf = np.frombuffer(data, dtype=np.uint8)
    crc = _crc32_update(CRC32_TABLE, buf, np.int64(CRC32_INITIAL))
    return int(crc) ^ CRC32_FINAL_XOR


def format_crc32(value):
    """
    Canonical 8-digit lowercase hex representation, as written in bricks.index.json
    """
    return f"{value:08x}"


@jit(nopython=True, nogil=True, cache=True)
def _half_bits_to_single_bits(half_bits, single_bits):
    for i in range(half_bits.shape[0]):
        h = np.int64(half_bits[i])
        sign = (h >> 15) & 0x1
        exp = (h >> 10) & 0x1F
        mant = h & 0x3FF

        if exp == 0:
            if mant == 0:
                # signed zero
                f = sign << 31
            else:
                # subnormal: renormalize until the implicit bit appears
                exp = 1
                while (mant & 0x400) == 0:
                    mant <<= 1
                    exp -= 1
                mant &= 0x3FF
                f = (sign << 31) | ((exp + 112) << 23) | (mant << 13)
        elif exp == 31:
            # inf or NaN (the NaN payload is preserved)
            f = (sign << 31) | 0x7F800000 | (mant << 13)
        else:
            f = (sign << 31) | ((exp + 112) << 23) | (mant << 13)

        single_bits[i] = f


def half_to_float32(raw):
    """
    Convert a buffer of little-endian IEEE-754 binary16 values to a float32 array.
    The conversion is exact (every half value is representable in single precision).
    """
    half_bits = np.frombuffer(raw, dtype='<u2')
    single_bits = np.empty(half_bits.shape, dtype=np.uint32)
    _half_bits_to_single_bits(half_bits, single_bits)
    return single_bits.view(np.float32)


def f32_to_float32(raw):
    """
    Interpret a buffer of little-endian IEEE-754 binary32 values as a (native-order) float32 array.
    """
    return np.frombuffer(raw, dtype='<f4').astype(np.float32)


# dtype name -> decoding function
DECODERS = { "f16": half_to_float32,
             "f32": f32_to_float32 }

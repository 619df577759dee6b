"""
ICC profile 读取: tag 目录 + vcgt 标签解码.
read_profile_bytes
read_tag_directory / locate_vcgt_tag
find_profile_start
decode_vcgt
"""

import logging
import struct

import numpy as np

from log import Diagnostic

logger = logging.getLogger(__name__)

HEADER_SIZE = 128
TAG_ENTRY_SIZE = 12
VCGT_SIGNATURE = b'vcgt'
PROFILE_MAGIC = b'acsp'
# 'acsp' 在 header 中的偏移
PROFILE_MAGIC_OFFSET = 36

VCGT_TYPE_TABLE = 0
VCGT_TYPE_FORMULA = 1


class IccIOError(OSError):
    """profile 无法读取, 或读取中途数据不足"""


class FormatError(ValueError):
    """tag 目录或 tag 内容格式错误"""


class TagNotFound(FormatError):
    pass


class Truncated(FormatError):
    """tag 内容超出其声明的 size"""


class UnsupportedFormat(ValueError):
    """未知 curveType / 通道数 / entrySize"""


class TagDirectoryEntry:
    __slots__ = ('signature', 'offset', 'size')

    def __init__(self, signature, offset, size):
        object.__setattr__(self, 'signature', bytes(signature))
        object.__setattr__(self, 'offset', offset)
        object.__setattr__(self, 'size', size)

    def __setattr__(self, name, value):
        raise AttributeError("TagDirectoryEntry is immutable")

    def __eq__(self, other):
        if not isinstance(other, TagDirectoryEntry):
            return NotImplemented
        return (self.signature, self.offset, self.size) == (other.signature, other.offset, other.size)

    def __hash__(self):
        return hash((self.signature, self.offset, self.size))

    def __repr__(self):
        return f"TagDirectoryEntry({self.signature!r}, offset={self.offset}, size={self.size})"


class VcgtFormula:
    """vcgt curveType=1: 每通道 gamma/min/max"""
    kind = 'formula'
    __slots__ = ('red_gamma', 'red_min', 'red_max',
                 'green_gamma', 'green_min', 'green_max',
                 'blue_gamma', 'blue_min', 'blue_max')

    def __init__(self, red_gamma, red_min, red_max,
                 green_gamma, green_min, green_max,
                 blue_gamma, blue_min, blue_max):
        values = (red_gamma, red_min, red_max,
                  green_gamma, green_min, green_max,
                  blue_gamma, blue_min, blue_max)
        for name, value in zip(self.__slots__, values):
            object.__setattr__(self, name, value)

    def __setattr__(self, name, value):
        raise AttributeError("VcgtFormula is immutable")

    @property
    def gammas(self):
        return self.red_gamma, self.green_gamma, self.blue_gamma

    def __repr__(self):
        return ("VcgtFormula("
                f"r=({self.red_gamma:.4f}, {self.red_min:.4f}, {self.red_max:.4f}), "
                f"g=({self.green_gamma:.4f}, {self.green_min:.4f}, {self.green_max:.4f}), "
                f"b=({self.blue_gamma:.4f}, {self.blue_min:.4f}, {self.blue_max:.4f}))")


class VcgtTable:
    """
    vcgt curveType=0: 三通道采样表.
    red/green/blue 为原始采样值 (uint16 数组), 1 字节表范围 0~255, 2 字节表 0~65535.
    """
    kind = 'table'

    def __init__(self, channels, entry_count, entry_size, red, green, blue):
        self.channels = channels
        self.entry_count = entry_count
        self.entry_size = entry_size
        self.red = red
        self.green = green
        self.blue = blue
        for arr in (self.red, self.green, self.blue):
            arr.setflags(write=False)

    def __repr__(self):
        return (f"VcgtTable(channels={self.channels}, entry_count={self.entry_count}, "
                f"entry_size={self.entry_size})")


def read_profile_bytes(path):
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise IccIOError(f"无法读取 profile {path}: {e}") from e


def _unpack(fmt, data, pos, end, exc, what):
    n = struct.calcsize(fmt)
    if pos < 0 or pos + n > end:
        raise exc(f"读取 {what} 越界: 需要 [{pos}, {pos + n}), 可用 {end} 字节")
    return struct.unpack_from(fmt, data, pos)


def iter_tag_directory(data):
    """
    逐项读取 128 字节 header 之后的 tag 目录, 产出 TagDirectoryEntry (保持目录顺序).
    数据不足 -> IccIOError, 只在读到越界的那一项时才报错.
    """
    end = len(data)
    count, = _unpack('>I', data, HEADER_SIZE, end, IccIOError, "tag count")
    pos = HEADER_SIZE + 4
    for i in range(count):
        sig, offset, size = _unpack('>4sII', data, pos, end, IccIOError, f"tag entry {i}")
        yield TagDirectoryEntry(sig, offset, size)
        pos += TAG_ENTRY_SIZE


def read_tag_directory(data):
    return list(iter_tag_directory(data))


def locate_vcgt_tag(data):
    """返回第一个 vcgt tag 的 (offset, size)"""
    # 找到即停止; 目录后面即使被截断也不影响已找到的 vcgt
    count = 0
    for count, entry in enumerate(iter_tag_directory(data), 1):
        if entry.signature == VCGT_SIGNATURE:
            logger.debug("vcgt found: entry=%d offset=%d size=%d", count - 1, entry.offset, entry.size)
            return entry.offset, entry.size
    raise TagNotFound(f"profile 中没有 vcgt tag (共 {count} 个 tag)")


def find_profile_start(data, start=0):
    """
    在字节流中查找 'acsp' 魔数, 返回 profile header 起始偏移; 未找到返回 None.
    逐字节 4 状态匹配, 不匹配时回到状态 0 并用当前字节重新判断.
    """
    state = 0
    pos = start
    while pos < len(data):
        c = data[pos]
        if c == PROFILE_MAGIC[state]:
            state += 1
            if state == len(PROFILE_MAGIC):
                header = pos + 1 - len(PROFILE_MAGIC) - PROFILE_MAGIC_OFFSET
                if header >= 0:
                    return header
                state = 0
        elif c == PROFILE_MAGIC[0]:
            state = 1
        else:
            state = 0
        pos += 1
    return None


def iter_profile_starts(data):
    """依次产出字节流中每个内嵌 profile 的起始偏移"""
    pos = 0
    while True:
        start = find_profile_start(data, pos)
        if start is None:
            return
        yield start
        pos = start + PROFILE_MAGIC_OFFSET + len(PROFILE_MAGIC)


def _decode_u15fixed16(raw: int) -> float:
    return raw / 65536.0


def decode_vcgt(data, tag_offset, tag_size, strict=False, logger=logger):
    """
    解码 vcgt tag.
    返回 (VcgtFormula | VcgtTable, [Diagnostic])
    strict=True 时, tag 内签名不是 'vcgt' 直接报 FormatError, 否则只给出 warning.
    """
    diagnostics = []
    tag_end = tag_offset + tag_size
    if tag_end > len(data):
        raise IccIOError(f"vcgt tag [{tag_offset}, {tag_end}) 超出文件长度 {len(data)}")

    sig, _reserved, curve_type = _unpack('>4s4sI', data, tag_offset, tag_end, Truncated, "vcgt header")
    if sig != VCGT_SIGNATURE:
        msg = f"invalid content of table vcgt, starting with {sig!r}"
        if strict:
            raise FormatError(msg)
        diagnostics.append(Diagnostic('warning', msg))
        logger.warning(msg)

    pos = tag_offset + 12
    if curve_type == VCGT_TYPE_FORMULA:
        raw = _unpack('>9I', data, pos, tag_end, Truncated, "vcgt formula")
        curve = VcgtFormula(*[_decode_u15fixed16(v) for v in raw])
        logger.debug("Red:   Gamma %f \tMin %f \tMax %f", curve.red_gamma, curve.red_min, curve.red_max)
        logger.debug("Green: Gamma %f \tMin %f \tMax %f", curve.green_gamma, curve.green_min, curve.green_max)
        logger.debug("Blue:  Gamma %f \tMin %f \tMax %f", curve.blue_gamma, curve.blue_min, curve.blue_max)
        return curve, diagnostics

    if curve_type != VCGT_TYPE_TABLE:
        raise UnsupportedFormat(f"未知 vcgt curveType: {curve_type}")

    channels, entry_count, entry_size = _unpack('>3H', data, pos, tag_end, Truncated, "vcgt table header")
    pos += 6
    if channels != 3:
        raise UnsupportedFormat(f"vcgt 仅支持 3 通道, 实际 {channels}")
    if entry_size not in (1, 2):
        raise UnsupportedFormat(f"vcgt entrySize 仅支持 1 或 2, 实际 {entry_size}")
    if entry_count == 0:
        raise FormatError("vcgt 表没有任何采样")
    logger.debug("channels: %d, entry size: %dbits, entries/channel: %d",
                 channels, entry_size * 8, entry_count)

    need = channels * entry_count * entry_size
    if pos + need > tag_end:
        raise Truncated(f"vcgt 表需要 {need} 字节采样, tag 内只剩 {tag_end - pos} 字节")

    # 通道优先顺序: 先全部 R, 再 G, 再 B
    if entry_size == 1:
        samples = np.frombuffer(data, dtype=np.uint8, count=channels * entry_count, offset=pos)
    else:
        samples = np.frombuffer(data, dtype='>u2', count=channels * entry_count, offset=pos)
    samples = samples.astype(np.uint16).reshape(channels, entry_count)
    curve = VcgtTable(channels, entry_count, entry_size,
                      samples[0].copy(), samples[1].copy(), samples[2].copy())
    return curve, diagnostics


class ICCProfile:
    def __init__(self, path=None, data=None):
        if data is None:
            data = read_profile_bytes(path)
        self.path = path
        self.data = bytes(data)
        self.tags = self._read_tag_table()

    @classmethod
    def from_bytes(cls, data):
        return cls(data=data)

    def _read_tag_table(self):
        tags = {}
        for i, entry in enumerate(read_tag_directory(self.data)):
            name = entry.signature.decode('ascii', errors='replace')
            # 同名 tag 以目录中第一个为准
            if name not in tags:
                tags[name] = {
                    'offset': entry.offset,
                    'size': entry.size,
                    'index': i,
                }
        return tags

    def read_vcgt(self, strict=False):
        """
        读取 'vcgt' 标签.
        返回 (curve, diagnostics); 无 vcgt -> TagNotFound
        """
        offset, size = locate_vcgt_tag(self.data)
        return decode_vcgt(self.data, offset, size, strict=strict)

import logging

import numpy as np

from log import Diagnostic

logger = logging.getLogger(__name__)

# UNIX 系统 gamma 约 2.2222 (XFree gamma 1.0 对应输出端 gamma 2.222)
# MacOS 为 1.8, Windows 为 2.2
SYSTEM_GAMMA = 2.222222
MAX_16BIT_SCALE = 65535
# 旧版 xcalib 使用的常数, 比 16bit 最大值多 28, 接近 1.0 时会溢出
LEGACY_SCALE = 65563

CHANNELS = ('red', 'green', 'blue')


class GammaRamp:
    """三通道 uint16 gamma ramp, 每通道长度 == size"""

    def __init__(self, red, green, blue):
        red, green, blue = (np.asarray(c, dtype=np.uint16) for c in (red, green, blue))
        if not (red.ndim == green.ndim == blue.ndim == 1):
            raise ValueError("ramp channels must be 1-D")
        if not (len(red) == len(green) == len(blue)):
            raise ValueError("ramp 通道长度需一致")
        self.size = len(red)
        self.red = red
        self.green = green
        self.blue = blue
        for arr in (self.red, self.green, self.blue):
            arr.setflags(write=False)

    def channels(self):
        return zip(CHANNELS, (self.red, self.green, self.blue))

    @classmethod
    def identity(cls, size):
        """gamma 1.0 的线性 ramp, 用于 --clear"""
        if size <= 0:
            raise ValueError(f"ramp size must be > 0, got {size}")
        if size == 1:
            lin = np.zeros(1)
        else:
            lin = np.arange(size, dtype=np.float64) / (size - 1)
        ch = np.round(lin * MAX_16BIT_SCALE).astype(np.uint16)
        return cls(ch, ch.copy(), ch.copy())

    def __repr__(self):
        return f"GammaRamp(size={self.size})"


def widen_samples(samples, entry_size):
    """1 字节采样 x257 映射到 16bit (0xFF -> 0xFFFF), 2 字节原样"""
    samples = np.asarray(samples, dtype=np.uint32)
    if entry_size == 1:
        samples = samples * 257
    return np.clip(samples, 0, 0xFFFF).astype(np.uint16)


def resample_indices(entry_count, target_size):
    """
    最近邻重采样的索引表.
      entry_count == target_size: 原样
      entry_count >  target_size: ratio = n // t, idx = ratio * j
      entry_count <  target_size: ratio = t // n, idx = j // ratio
    ratio 一般不能整除, 所有索引都限制在 [0, entry_count-1]
    """
    if entry_count <= 0:
        raise ValueError(f"entry_count must be > 0, got {entry_count}")
    if target_size <= 0:
        raise ValueError(f"target_size must be > 0, got {target_size}")
    j = np.arange(target_size, dtype=np.int64)
    if entry_count == target_size:
        return j
    if entry_count > target_size:
        ratio = entry_count // target_size
        idx = ratio * j
    else:
        ratio = target_size // entry_count
        idx = j // ratio
    return np.clip(idx, 0, entry_count - 1)


def evaluate_table(curve, target_size):
    idx = resample_indices(curve.entry_count, target_size)
    chans = [widen_samples(c, curve.entry_size)[idx] for c in (curve.red, curve.green, curve.blue)]
    return GammaRamp(*chans)


def _formula_channel(gamma, target_size, scale):
    x = np.arange(target_size, dtype=np.float64) / target_size
    y = np.round(scale * np.power(x, gamma * SYSTEM_GAMMA))
    return np.clip(y, 0, 0xFFFF).astype(np.uint16)


def evaluate_formula(curve, target_size, scale=MAX_16BIT_SCALE):
    # min/max 目前没有参与计算
    return GammaRamp(*[_formula_channel(g, target_size, scale) for g in curve.gammas])


def evaluate(curve, target_size, scale=MAX_16BIT_SCALE):
    """
    把 VcgtFormula / VcgtTable 转为 target_size 长度的 GammaRamp.
    scale 只对 formula 生效 (默认 65535, 兼容旧行为可传 LEGACY_SCALE).
    """
    if target_size <= 0:
        raise ValueError(f"target_size must be > 0, got {target_size}")
    if curve.kind == 'formula':
        return evaluate_formula(curve, target_size, scale=scale)
    if curve.kind == 'table':
        if curve.entry_count != target_size:
            logger.info(f"vcgt 表长度 {curve.entry_count} 与硬件 ramp {target_size} 不一致, 最近邻重采样")
        return evaluate_table(curve, target_size)
    raise ValueError(f"Unknown curve kind: {curve.kind}")


def validate_ramp(ramp, logger=logger):
    """
    检查每个通道是否单调不减. 每个下降点给出一条 warning, 不修改也不拒绝 ramp.
    """
    diagnostics = []
    for name, ch in ramp.channels():
        ch = ch.astype(np.int32)
        for i in np.flatnonzero(np.diff(ch) < 0):
            msg = f"nonsense content in {name} gamma table: entry {i + 1} ({ch[i + 1]}) < entry {i} ({ch[i]})"
            diagnostics.append(Diagnostic('warning', msg))
            logger.warning(msg)
    return diagnostics

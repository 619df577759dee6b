"""
把 ICC profile 中的 vcgt 标签加载到显示器的硬件 gamma ramp.

    python app.py [-d DISPLAY] [-s SCREEN] [-n] [-v] profile.icc
    python app.py -c
"""

import argparse
import logging
import sys

from icc_rw import (
    FormatError, IccIOError, TagNotFound, UnsupportedFormat,
    decode_vcgt, iter_profile_starts, locate_vcgt_tag, read_profile_bytes,
)
from log import DiagnosticHandler, init_logging
from lut import LEGACY_SCALE, MAX_16BIT_SCALE, evaluate, validate_ramp
from win_display import HardwareError, open_display

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


class VcgtConfig:
    """
    strict:       tag 内签名不是 'vcgt' 时报错 (默认只警告)
    legacy_scale: formula 使用旧常数 65563 而不是 65535
    search:       在字节流中搜索 'acsp' 定位内嵌 profile
    verbose:      输出调试信息和完整 ramp
    """

    def __init__(self, strict=False, legacy_scale=False, search=False, verbose=False):
        self.strict = strict
        self.legacy_scale = legacy_scale
        self.search = search
        self.verbose = verbose

    @property
    def scale(self):
        return LEGACY_SCALE if self.legacy_scale else MAX_16BIT_SCALE

    @classmethod
    def from_args(cls, args):
        return cls(strict=args.strict, legacy_scale=args.legacy_scale,
                   search=args.search, verbose=args.verbose)


def _search_vcgt(data, logger):
    """
    依次检查字节流中每个内嵌 profile, 返回第一个带 vcgt 的 (profile 字节, offset, size).
    """
    found = 0
    for start in iter_profile_starts(data):
        found += 1
        profile = data[start:]
        try:
            offset, size = locate_vcgt_tag(profile)
        except (TagNotFound, IccIOError) as e:
            logger.debug(f"偏移 {start} 处的 profile 不可用: {e}")
            continue
        logger.debug(f"profile 起始偏移: {start}")
        return profile, offset, size
    if not found:
        raise FormatError("未找到 ICC profile 签名 'acsp'")
    raise TagNotFound(f"{found} 个内嵌 profile 中都没有可用的 vcgt tag")


def load_vcgt_ramp(data, target_size, config=None, logger=logger):
    """
    profile 字节 -> (GammaRamp, [Diagnostic])
    """
    if config is None:
        config = VcgtConfig()
    if target_size <= 0:
        raise ValueError(f"target_size must be > 0, got {target_size}")

    if config.search:
        data, offset, size = _search_vcgt(data, logger)
    else:
        offset, size = locate_vcgt_tag(data)
    curve, diagnostics = decode_vcgt(data, offset, size, strict=config.strict, logger=logger)
    logger.info(f"vcgt: {curve!r}")
    ramp = evaluate(curve, target_size, scale=config.scale)
    diagnostics = diagnostics + validate_ramp(ramp, logger=logger)
    return ramp, diagnostics


def format_ramp_table(ramp):
    return [f"{r:x} {g:x} {b:x}" for r, g, b in zip(ramp.red.tolist(), ramp.green.tolist(), ramp.blue.tolist())]


def build_parser():
    parser = argparse.ArgumentParser(
        prog="vcgt-loader",
        description="load the vcgt tag of an ICC profile into the video card gamma ramp")
    parser.add_argument("profile", nargs="?", help="ICC profile containing a vcgt tag")
    parser.add_argument("-d", "--display", help="X11 display (host:dpy) or GDI device name")
    parser.add_argument("-s", "--screen", type=int, help="X11 screen number")
    parser.add_argument("-c", "--clear", action="store_true", help="reset the gamma ramp to linear")
    parser.add_argument("-n", "--noaction", action="store_true", help="do not alter the video LUT")
    parser.add_argument("-v", "--verbose", action="store_true", help="print debug output and the ramp")
    parser.add_argument("--ramp-size", type=int, help="override the hardware ramp size")
    parser.add_argument("--strict", action="store_true", help="fail on an inconsistent vcgt signature")
    parser.add_argument("--legacy-scale", action="store_true",
                        help=f"use the historic {LEGACY_SCALE} scale for formula curves")
    parser.add_argument("--search", action="store_true", help="search for an embedded profile ('acsp')")
    parser.add_argument("--log-file", help="also write a DEBUG log to this file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None, display_factory=open_display, configure_logging=True):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.clear and not args.profile:
        parser.error("last parameter must be an ICC profile containing a vcgt tag")
    if args.ramp_size is not None and args.ramp_size <= 0:
        parser.error("--ramp-size must be > 0")
    config = VcgtConfig.from_args(args)

    if configure_logging:
        init_logging(config.verbose, args.log_file)
    # 显示后端自己的警告 (例如被忽略的参数) 也计入结果
    display_logger = logging.getLogger("win_display")
    collector = DiagnosticHandler()
    display_logger.addHandler(collector)

    display = None
    try:
        if args.clear:
            display = display_factory(args.display, args.screen)
            display.reset()
            logging.info("gamma ramp 已重置")
            return 0

        data = read_profile_bytes(args.profile)
        if args.ramp_size is None or not args.noaction:
            display = display_factory(args.display, args.screen)
        target_size = args.ramp_size if args.ramp_size is not None else display.ramp_size()
        if target_size <= 0:
            raise HardwareError(f"invalid gamma ramp size {target_size}")
        logging.info(f"X-LUT size: {target_size}")

        ramp, diagnostics = load_vcgt_ramp(data, target_size, config)
        if config.verbose:
            for line in format_ramp_table(ramp):
                logging.debug(line)

        if args.noaction:
            logging.info("noaction: 不写入 gamma ramp")
        else:
            display.set_ramp(ramp)
            logging.info(f"gamma ramp 已写入 ({ramp.size} entries)")

        diagnostics = diagnostics + collector.diagnostics
        if diagnostics:
            logging.info(f"完成, {len(diagnostics)} 条警告")
        return 0
    except (IccIOError, FormatError, UnsupportedFormat) as e:
        logging.error(f"{args.profile}: {e}")
        return 1
    except HardwareError as e:
        logging.error(str(e))
        return 1
    finally:
        display_logger.removeHandler(collector)
        if display is not None:
            display.close()


if __name__ == "__main__":
    sys.exit(main())

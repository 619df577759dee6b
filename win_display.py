"""
显示器硬件 gamma ramp 读写.
X11Display: XF86VidMode (libX11 + libXxf86vm)
GdiDisplay: Windows GDI Get/SetDeviceGammaRamp
open_display
"""

import ctypes
import ctypes.util
import logging
import sys

import numpy as np

from lut import GammaRamp

logger = logging.getLogger(__name__)

# GDI 的 gamma ramp 固定为 3 x 256 个 WORD
GDI_RAMP_SIZE = 256


class HardwareError(OSError):
    """显示器不可用, 或驱动拒绝了 gamma ramp"""


class XF86VidModeGamma(ctypes.Structure):
    _fields_ = [
        ("red", ctypes.c_float),
        ("green", ctypes.c_float),
        ("blue", ctypes.c_float),
    ]


def _load_library(name):
    path = ctypes.util.find_library(name)
    if not path:
        raise HardwareError(f"找不到动态库 lib{name}")
    try:
        return ctypes.CDLL(path)
    except OSError as e:
        raise HardwareError(f"加载 {path} 失败: {e}") from e


def _ramp_array(channel):
    arr = np.ascontiguousarray(channel, dtype=np.uint16)
    return (ctypes.c_ushort * len(arr))(*arr.tolist())


class X11Display:
    def __init__(self, name=None, screen=None):
        self.xlib = _load_library("X11")
        self.xf86vm = _load_library("Xxf86vm")

        self.xlib.XOpenDisplay.argtypes = [ctypes.c_char_p]
        self.xlib.XOpenDisplay.restype = ctypes.c_void_p
        self.xlib.XDisplayName.argtypes = [ctypes.c_char_p]
        self.xlib.XDisplayName.restype = ctypes.c_char_p
        self.xlib.XDefaultScreen.argtypes = [ctypes.c_void_p]
        self.xlib.XDefaultScreen.restype = ctypes.c_int
        self.xlib.XCloseDisplay.argtypes = [ctypes.c_void_p]
        self.xlib.XCloseDisplay.restype = ctypes.c_int

        ramp_p = ctypes.POINTER(ctypes.c_ushort)
        self.xf86vm.XF86VidModeGetGammaRampSize.argtypes = [ctypes.c_void_p, ctypes.c_int, ctypes.POINTER(ctypes.c_int)]
        self.xf86vm.XF86VidModeGetGammaRampSize.restype = ctypes.c_int
        self.xf86vm.XF86VidModeSetGammaRamp.argtypes = [ctypes.c_void_p, ctypes.c_int, ctypes.c_int, ramp_p, ramp_p, ramp_p]
        self.xf86vm.XF86VidModeSetGammaRamp.restype = ctypes.c_int
        self.xf86vm.XF86VidModeSetGamma.argtypes = [ctypes.c_void_p, ctypes.c_int, ctypes.POINTER(XF86VidModeGamma)]
        self.xf86vm.XF86VidModeSetGamma.restype = ctypes.c_int

        bname = name.encode() if name else None
        self.dpy = self.xlib.XOpenDisplay(bname)
        if not self.dpy:
            shown = self.xlib.XDisplayName(bname)
            raise HardwareError(f"Can't open display {shown.decode(errors='replace') if shown else name}")
        self.screen = self.xlib.XDefaultScreen(self.dpy) if screen is None else int(screen)
        logger.debug(f"X11 display opened, screen={self.screen}")

    def ramp_size(self):
        size = ctypes.c_int(0)
        if not self.xf86vm.XF86VidModeGetGammaRampSize(self.dpy, self.screen, ctypes.byref(size)):
            raise HardwareError("Unable to query gamma ramp size")
        return size.value

    def set_ramp(self, ramp):
        r, g, b = (_ramp_array(c) for c in (ramp.red, ramp.green, ramp.blue))
        if not self.xf86vm.XF86VidModeSetGammaRamp(self.dpy, self.screen, ramp.size, r, g, b):
            raise HardwareError("Unable to calibrate display")

    def reset(self):
        gamma = XF86VidModeGamma(1.0, 1.0, 1.0)
        if not self.xf86vm.XF86VidModeSetGamma(self.dpy, self.screen, ctypes.byref(gamma)):
            raise HardwareError("Unable to reset display gamma")

    def close(self):
        if self.dpy:
            self.xlib.XCloseDisplay(self.dpy)
            self.dpy = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class GdiDisplay:
    """
    name 为 GDI 设备名 (如 \\\\.\\DISPLAY1), 为空时使用整个桌面的 DC.
    """

    def __init__(self, name=None, screen=None):
        from ctypes import wintypes

        self.user32 = ctypes.WinDLL("user32", use_last_error=True)
        self.gdi32 = ctypes.WinDLL("gdi32", use_last_error=True)

        self.user32.GetDC.argtypes = [wintypes.HWND]
        self.user32.GetDC.restype = wintypes.HDC
        self.user32.ReleaseDC.argtypes = [wintypes.HWND, wintypes.HDC]
        self.user32.ReleaseDC.restype = ctypes.c_int
        self.gdi32.CreateDCW.argtypes = [wintypes.LPCWSTR, wintypes.LPCWSTR, wintypes.LPCWSTR, ctypes.c_void_p]
        self.gdi32.CreateDCW.restype = wintypes.HDC
        self.gdi32.DeleteDC.argtypes = [wintypes.HDC]
        self.gdi32.DeleteDC.restype = wintypes.BOOL
        self.gdi32.SetDeviceGammaRamp.argtypes = [wintypes.HDC, ctypes.c_void_p]
        self.gdi32.SetDeviceGammaRamp.restype = wintypes.BOOL

        if screen is not None:
            logger.warning("GDI 后端忽略 screen 参数, 请用 --display 指定设备名")
        self.name = name
        if name:
            self.hdc = self.gdi32.CreateDCW("DISPLAY", name, None, None)
        else:
            self.hdc = self.user32.GetDC(None)
        if not self.hdc:
            raise HardwareError(f"Can't open display {name or 'desktop'}: WinErr={ctypes.get_last_error()}")

    def ramp_size(self):
        return GDI_RAMP_SIZE

    def set_ramp(self, ramp):
        if ramp.size != GDI_RAMP_SIZE:
            raise HardwareError(f"GDI gamma ramp 必须为 {GDI_RAMP_SIZE} 项, 实际 {ramp.size}")
        buf = (ctypes.c_ushort * (3 * GDI_RAMP_SIZE))(
            *np.concatenate([ramp.red, ramp.green, ramp.blue]).tolist())
        if not self.gdi32.SetDeviceGammaRamp(self.hdc, ctypes.byref(buf)):
            raise HardwareError(f"SetDeviceGammaRamp failed: WinErr={ctypes.get_last_error()}")

    def reset(self):
        self.set_ramp(GammaRamp.identity(GDI_RAMP_SIZE))

    def close(self):
        if self.hdc:
            if self.name:
                self.gdi32.DeleteDC(self.hdc)
            else:
                self.user32.ReleaseDC(None, self.hdc)
            self.hdc = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def open_display(name=None, screen=None):
    if sys.platform.startswith("win"):
        return GdiDisplay(name, screen)
    return X11Display(name, screen)

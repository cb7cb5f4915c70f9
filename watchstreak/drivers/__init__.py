from watchstreak.drivers.mpv_driver import MpvTransport

__all__ = ["MpvTransport"]

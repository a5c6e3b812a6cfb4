"""데스크톱 / 모바일 디바이스 설정."""

from dataclasses import dataclass


@dataclass(frozen=True)
class DeviceConfig:
    name: str
    device_mode: str  # "desktop" | "mobile"
    viewport_width: int
    viewport_height: int
    user_agent: str
    is_mobile: bool
    has_touch: bool
    device_scale_factor: float

    def context_options(self) -> dict:
        return {
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "user_agent": self.user_agent,
            "is_mobile": self.is_mobile,
            "has_touch": self.has_touch,
            "device_scale_factor": self.device_scale_factor,
        }


DESKTOP_DEVICE = DeviceConfig(
    name="Desktop Chrome",
    device_mode="desktop",
    viewport_width=1920,
    viewport_height=1080,
    user_agent=(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    ),
    is_mobile=False,
    has_touch=False,
    device_scale_factor=1.0,
)

MOBILE_IPHONE = DeviceConfig(
    name="iPhone 14 Pro",
    device_mode="mobile",
    viewport_width=390,
    viewport_height=844,
    user_agent=(
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/17.0 Mobile/15E148 Safari/604.1"
    ),
    is_mobile=True,
    has_touch=True,
    device_scale_factor=3.0,
)

DEVICES: dict[str, DeviceConfig] = {
    "desktop": DESKTOP_DEVICE,
    "mobile": MOBILE_IPHONE,
}


def get_device(device_mode: str | None) -> DeviceConfig:
    """알 수 없는 모드는 데스크톱으로."""
    return DEVICES.get((device_mode or "desktop").lower(), DESKTOP_DEVICE)

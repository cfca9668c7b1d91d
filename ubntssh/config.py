import os
from typing import Optional

# ========= Static config =========
CONNECT_TIMEOUT = 10
KEEPALIVE_INTERVAL = 30
BUFFER_SIZE = 4096
HEALTH_CHECK_INTERVAL = 30

DEFAULT_POLL_TIMEOUT = 30.0
MAX_POLL_TIMEOUT = 300.0
DEFAULT_HARD_TIMEOUT = 0.0  # 0 means disabled
MAX_HARD_TIMEOUT = 3600.0
POLL_INTERVAL = 0.05

# dropbear's scp on airOS refuses reads larger than this
SCP_READ_SIZE = 2048
CONFIG_PATH = "/tmp/system.cfg"

# output buffer size older mca-status converters were limited to
LEGACY_STATUS_BUFFER = 2048

# ========= Canned device commands =========
STATION_LIST_COMMAND = "wstalist"
SCAN_COMMAND = "iwlist ath0 scan | scanparser"
STATUS_COMMAND = "mca-status"
SAVE_COMMAND = "cfgmtd -w -p /etc/"

# ========= Runtime Configuration =========
class DeviceConfig:
    def __init__(self):
        self.UBNT_HOST: Optional[str] = None
        self.UBNT_USER: Optional[str] = None
        self.UBNT_PASSWORD: Optional[str] = None
        self.UBNT_PORT: int = 22
        self.UBNT_PUBLIC_KEY: Optional[str] = None
        self.UBNT_PRIVATE_KEY: Optional[str] = None
        self.UBNT_KEY_PASSPHRASE: Optional[str] = None
        self.UBNT_VERIFY_HOST_KEY: bool = True
        self.UBNT_POLL_TIMEOUT: float = DEFAULT_POLL_TIMEOUT

    def load_from_env(self) -> "DeviceConfig":
        self.UBNT_HOST = os.environ.get("UBNT_HOST", self.UBNT_HOST)
        self.UBNT_USER = os.environ.get("UBNT_USER", self.UBNT_USER)
        self.UBNT_PASSWORD = os.environ.get("UBNT_PASSWORD", self.UBNT_PASSWORD)
        self.UBNT_PORT = int(os.environ.get("UBNT_PORT", self.UBNT_PORT))
        self.UBNT_PUBLIC_KEY = os.environ.get("UBNT_PUBLIC_KEY", self.UBNT_PUBLIC_KEY)
        self.UBNT_PRIVATE_KEY = os.environ.get("UBNT_PRIVATE_KEY", self.UBNT_PRIVATE_KEY)
        self.UBNT_KEY_PASSPHRASE = os.environ.get("UBNT_KEY_PASSPHRASE", self.UBNT_KEY_PASSPHRASE)
        self.UBNT_POLL_TIMEOUT = float(os.environ.get("UBNT_POLL_TIMEOUT", self.UBNT_POLL_TIMEOUT))

        verify_host_env = os.environ.get("UBNT_VERIFY_HOST_KEY")
        if verify_host_env is not None:
            self.UBNT_VERIFY_HOST_KEY = verify_host_env.lower() in ("true", "1", "yes")
        return self

    def uses_keypair(self) -> bool:
        return bool(self.UBNT_PUBLIC_KEY and self.UBNT_PRIVATE_KEY)

# Global instance
config = DeviceConfig()

"""
HomeKit configuration module

Settings for the HAP-python accessory server that publishes the bridged
lightbulb: listening port, where pairing state is persisted, the setup
code and the address to bind. Also builds the X-HM:// setup URI that the
Home app reads from a pairing QR code.
"""
import os
import random
import re
import string
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Optional

DEFAULT_HOMEKIT_PORT = 51826
DEFAULT_PERSIST_DIR = "data/homekit"
DEFAULT_BIND_ADDRESS = "0.0.0.0"

# HAP accessory category for a standalone lightbulb
HOMEKIT_CATEGORY_LIGHTBULB = 5

# Setup code used when random generation keeps hitting rejected codes
FALLBACK_PINCODE = "031-45-154"

PINCODE_PATTERN = re.compile(r"^\d{3}-\d{2}-\d{3}$")

# Setup codes the Home app refuses: repeated digits and a few trivial runs
REJECTED_PINCODES: FrozenSet[str] = frozenset(
    [f"{d * 3}-{d * 2}-{d * 3}" for d in string.digits]
    + ["123-45-678", "876-54-321", "012-34-567", "234-56-789", "121-21-212", "123-12-312"]
)

_BASE36 = string.digits + string.ascii_uppercase

# Setup payload flag for IP transport
_FLAG_IP = 0x2


def is_valid_pincode(code: str) -> bool:
    """Return True for an XXX-XX-XXX code the Home app will accept."""
    return bool(PINCODE_PATTERN.match(code)) and code not in REJECTED_PINCODES


def generate_pincode() -> str:
    """
    Generate a random setup code in XXX-XX-XXX format.

    Returns:
        A code accepted by is_valid_pincode
    """
    for _ in range(100):
        digits = "".join(random.choices(string.digits, k=8))
        code = f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"
        if is_valid_pincode(code):
            return code
    return FALLBACK_PINCODE


def generate_setup_id() -> str:
    """Generate the 4-character Setup ID appended to the setup URI."""
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=4))


def _to_base36(number: int, width: int) -> str:
    encoded = ""
    while number:
        number, digit = divmod(number, 36)
        encoded = _BASE36[digit] + encoded
    return encoded.rjust(width, "0")


def generate_setup_uri(setup_code: str, setup_id: str, category: int = HOMEKIT_CATEGORY_LIGHTBULB) -> str:
    """
    Build the X-HM:// setup URI encoded in a HomeKit pairing QR code.

    The payload packs the 8 setup code digits, the transport flags and the
    accessory category into one integer, written as 9 base36 characters
    and followed by the Setup ID.

    Args:
        setup_code: Setup code in XXX-XX-XXX format
        setup_id: 4-character alphanumeric Setup ID
        category: HAP accessory category (default: Lightbulb)

    Raises:
        ValueError: If setup_code is not XXX-XX-XXX or setup_id is not 4 characters
    """
    if not PINCODE_PATTERN.match(setup_code):
        raise ValueError(f"Invalid setup_code format: {setup_code}. Expected XXX-XX-XXX")
    if len(setup_id) != 4:
        raise ValueError(f"setup_id must be 4 characters, got {len(setup_id)}")

    payload = (int(setup_code.replace("-", "")) << 12) | (_FLAG_IP << 8) | (category & 0xFF)
    return f"X-HM://{_to_base36(payload, 9)}{setup_id}"


@dataclass
class HomekitConfig:
    """
    HAP accessory server settings.

    Attributes:
        port: TCP port the HAP server listens on
        persist_dir: Directory holding the pairing state file
        pincode: Setup code in XXX-XX-XXX format (generated when None)
        bind_address: Interface address for the HAP server
    """
    port: int = DEFAULT_HOMEKIT_PORT
    persist_dir: str = DEFAULT_PERSIST_DIR
    pincode: Optional[str] = None
    bind_address: str = DEFAULT_BIND_ADDRESS

    @property
    def persist_file(self) -> str:
        """Pairing state file written by the accessory driver."""
        return str(Path(self.persist_dir) / "accessory.state")

    def ensure_persist_dir(self) -> None:
        """Create the pairing state directory."""
        Path(self.persist_dir).mkdir(parents=True, exist_ok=True)


def get_homekit_config() -> HomekitConfig:
    """
    Build the HAP server settings from HOMEKIT_PORT, HOMEKIT_PERSIST_DIR,
    HOMEKIT_PINCODE and HOMEKIT_BIND_ADDRESS, falling back to the defaults.
    """
    return HomekitConfig(
        port=int(os.getenv("HOMEKIT_PORT", str(DEFAULT_HOMEKIT_PORT))),
        persist_dir=os.getenv("HOMEKIT_PERSIST_DIR", DEFAULT_PERSIST_DIR),
        pincode=os.getenv("HOMEKIT_PINCODE"),
        bind_address=os.getenv("HOMEKIT_BIND_ADDRESS", DEFAULT_BIND_ADDRESS),
    )

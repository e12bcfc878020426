"""
HomeKit accessory server service

Runs the HAP-python AccessoryDriver that publishes the bridged lightbulb
to the Apple Home app.

The driver is created on the bridge's event loop and started with
async_start, so characteristic getter/setter callbacks run on the same
loop as inbound MQTT handling.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pyhap.accessory_driver import AccessoryDriver

from lightbridge.config.homekit import (
    DEFAULT_BIND_ADDRESS,
    HOMEKIT_CATEGORY_LIGHTBULB,
    HomekitConfig,
    generate_pincode,
    generate_setup_id,
    generate_setup_uri,
    get_homekit_config,
    is_valid_pincode,
)
from lightbridge.services.lightbulb_accessory import LightbulbAccessory

logger = logging.getLogger(__name__)


@dataclass
class HomekitStatus:
    """HomeKit accessory server status."""
    running: bool = False
    paired: bool = False
    accessory_name: Optional[str] = None
    setup_code: Optional[str] = None
    setup_uri: Optional[str] = None
    port: int = 51826
    error: Optional[str] = None


class HomekitService:
    """
    HomeKit accessory server service.

    Lifecycle:
        1. Initialize with configuration
        2. create_driver(loop) and build the LightbulbAccessory on it
        3. start(accessory)
        4. stop() on shutdown

    Example:
        >>> service = HomekitService()
        >>> driver = service.create_driver(asyncio.get_running_loop())
        >>> await service.start(LightbulbAccessory(driver, config, mirror))
        >>> await service.stop()
    """

    def __init__(self, config: Optional[HomekitConfig] = None):
        """
        Initialize the HomeKit service.

        Args:
            config: HomeKit configuration. If None, loads from environment.
        """
        self.config = config or get_homekit_config()
        self._driver: Optional[AccessoryDriver] = None
        self._accessory: Optional[LightbulbAccessory] = None
        self._running = False
        self._pincode: Optional[str] = None
        self._setup_id: Optional[str] = None
        self._error: Optional[str] = None

    @property
    def driver(self) -> Optional[AccessoryDriver]:
        return self._driver

    @property
    def is_running(self) -> bool:
        """Check if the accessory server is running."""
        return self._running and self._driver is not None

    @property
    def is_paired(self) -> bool:
        """Check if the accessory is paired with a Home app."""
        if not self._driver:
            return False
        try:
            state_file = Path(self.config.persist_file)
            if state_file.exists():
                with open(state_file, 'r') as f:
                    state_data = json.load(f)
                paired_clients = state_data.get('paired_clients', {})
                return len(paired_clients) > 0
            return False
        except (OSError, ValueError) as e:
            logger.debug(f"Could not read pairing state: {e}")
            return False

    @property
    def pincode(self) -> str:
        """Get the HomeKit pairing code."""
        if self._pincode:
            return self._pincode
        if self.config.pincode:
            if not is_valid_pincode(self.config.pincode):
                logger.warning(
                    "Configured HomeKit pincode is not accepted by HomeKit, generating one",
                    extra={"event_type": "homekit_pincode_invalid"}
                )
                self._pincode = generate_pincode()
            else:
                self._pincode = self.config.pincode
        else:
            self._pincode = generate_pincode()
        return self._pincode

    @property
    def setup_id(self) -> str:
        """Get the 4-character Setup ID used in the X-HM:// setup URI."""
        if not self._setup_id:
            self._setup_id = generate_setup_id()
        return self._setup_id

    def get_setup_uri(self) -> str:
        """
        Get the HomeKit Setup URI for QR code pairing.

        Returns:
            X-HM:// URI string containing encoded setup code, category, and setup ID
        """
        return generate_setup_uri(
            setup_code=self.pincode,
            setup_id=self.setup_id,
            category=HOMEKIT_CATEGORY_LIGHTBULB
        )

    def create_driver(self, loop: asyncio.AbstractEventLoop) -> AccessoryDriver:
        """
        Create the accessory driver on the given event loop.

        Args:
            loop: Event loop the driver and its callbacks run on

        Returns:
            The AccessoryDriver, also kept for start()/stop()
        """
        self.config.ensure_persist_dir()

        driver_kwargs = {
            "port": self.config.port,
            "persist_file": self.config.persist_file,
            "pincode": self.pincode.encode('utf-8'),
            "loop": loop,
        }

        bind_address = self.config.bind_address
        if bind_address and bind_address != DEFAULT_BIND_ADDRESS:
            driver_kwargs["address"] = bind_address
            logger.info(
                f"HomeKit HAP server binding to specific address: {bind_address}",
                extra={"event_type": "homekit_bind", "bind_address": bind_address}
            )

        self._driver = AccessoryDriver(**driver_kwargs)
        return self._driver

    async def start(self, accessory: LightbulbAccessory) -> bool:
        """
        Publish the accessory and start the HAP server.

        Args:
            accessory: Lightbulb accessory built on the driver from create_driver()

        Returns:
            True if started successfully, False otherwise
        """
        if self._running:
            logger.warning("HomeKit service already running")
            return True

        if self._driver is None:
            self._error = "Accessory driver not created"
            logger.error("Cannot start HomeKit service before create_driver()")
            return False

        try:
            self._accessory = accessory
            self._driver.add_accessory(accessory.accessory)
            await self._driver.async_start()

            self._running = True
            self._error = None

            logger.info(
                f"HomeKit accessory server started on port {self.config.port}",
                extra={
                    "event_type": "homekit_started",
                    "port": self.config.port,
                    "accessory": accessory.name,
                }
            )
            if not self.is_paired:
                logger.info(
                    f"HomeKit setup code: {self.pincode}",
                    extra={"event_type": "homekit_setup_code", "setup_uri": self.get_setup_uri()}
                )
            return True

        except OSError as e:
            self._error = str(e)
            logger.error(
                f"Failed to start HomeKit service: {e}",
                exc_info=True,
                extra={"event_type": "homekit_start_failed"}
            )
            return False

    async def stop(self) -> None:
        """Stop the HomeKit accessory server."""
        if not self._running:
            return

        logger.info("Stopping HomeKit accessory server", extra={"event_type": "homekit_stopping"})

        try:
            if self._driver:
                await self._driver.async_stop()
        finally:
            self._running = False
            self._driver = None
            self._accessory = None

        logger.info("HomeKit accessory server stopped", extra={"event_type": "homekit_stopped"})

    def get_status(self) -> HomekitStatus:
        """
        Get current HomeKit service status.

        The setup code and URI are hidden once the accessory is paired.
        """
        is_paired = self.is_paired
        return HomekitStatus(
            running=self.is_running,
            paired=is_paired,
            accessory_name=self._accessory.name if self._accessory else None,
            setup_code=self.pincode if not is_paired else None,
            setup_uri=self.get_setup_uri() if not is_paired else None,
            port=self.config.port,
            error=self._error,
        )

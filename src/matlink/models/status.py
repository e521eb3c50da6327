"""Status enums for radio, network and firmware update lifecycles."""

from enum import Enum


class Capability(str, Enum):
    """Platform capabilities that must be granted before radio/network work."""

    RADIO_SCAN = "radioScan"
    RADIO_CONNECT = "radioConnect"
    NETWORK_SCAN = "networkScan"


class RadioReadiness(str, Enum):
    """Power/availability of the local radio adapter."""

    READY = "ready"
    NOT_READY = "notReady"


class RadioState(str, Enum):
    """Radio connection lifecycle.

    State transitions:
    idle → scanning → deviceSelected → connecting → connected → disconnected
      ↑        ↓                            ↓
      └────────┴────────────────────────────┘  (window expiry / failure)
    """

    IDLE = "idle"
    SCANNING = "scanning"
    DEVICE_SELECTED = "deviceSelected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class NetworkState(str, Enum):
    """Network session lifecycle."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class UpdateStage(str, Enum):
    """OTA lifecycle stages.

    State transitions:
    idle → checking → updateAvailable → downloading → installing → idle
                  ↘ noUpdate              ↓              ↓
                                        failed ←─────────┘
    """

    IDLE = "idle"
    CHECKING = "checking"
    UPDATE_AVAILABLE = "updateAvailable"
    NO_UPDATE = "noUpdate"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    FAILED = "failed"

    @property
    def is_busy(self) -> bool:
        """True while a check or an update session is running."""
        return self in (
            UpdateStage.CHECKING,
            UpdateStage.DOWNLOADING,
            UpdateStage.INSTALLING,
        )


class UpdatePhase(str, Enum):
    """Phase of an active UpdateSession."""

    CHECKING = "checking"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"


class UpdateOutcome(str, Enum):
    """Terminal outcome of an UpdateSession."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RadioEventKind(str, Enum):
    """Notifications published on the radio event stream."""

    SCAN_STARTED = "scanStarted"
    PERIPHERAL_DISCOVERED = "peripheralDiscovered"
    SCAN_STOPPED = "scanStopped"
    STATE_CHANGED = "stateChanged"
    LINK_LOST = "linkLost"

"""Protocol constants and consumer lifecycle states."""
from __future__ import annotations

from enum import Enum

XML_CONTENT_TYPE = "application/xml"
MNS_VERSION = "2015-06-06"
MNS_VERSION_HEADER = "x-mns-version"
AUTHORIZATION_SCHEME = "MNS"
XML_NAMESPACE = "http://mns.aliyuncs.com/doc/v1/"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 5.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0
DEFAULT_WAIT_SECONDS = 30
MAX_WAIT_SECONDS = 30
DEFAULT_REJECT_VISIBILITY_TIMEOUT = 1
MAX_BATCH_SIZE = 16


class ConsumerState(str, Enum):
    IDLE = "IDLE"
    ARMED = "ARMED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"

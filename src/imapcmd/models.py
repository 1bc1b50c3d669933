"""Core data models for imapcmd."""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class CommandKind(str, Enum):
    """Recognized command categories."""

    SCENE = "scene"
    SOLAR = "solar"
    ALARM = "alarm"
    WATER = "water"
    FREE = "free"


class ChangeEvent(str, Enum):
    """Mailbox notifications delivered while idling."""

    COUNT_CHANGED = "count_changed"
    FLAGS_CHANGED = "flags_changed"
    MESSAGE_EXPUNGED = "message_expunged"
    ANNOTATIONS_CHANGED = "annotations_changed"
    DISCONNECTED = "disconnected"


class ConnectionState(str, Enum):
    """Lifecycle of one mailbox connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    IDLE_WAITING = "idle_waiting"
    SCANNING = "scanning"


class ListenOutcome(str, Enum):
    """Why an idle listen loop returned."""

    CANCELLED = "cancelled"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class MessageSummary(BaseModel):
    """Envelope view of one message, valid for a single scan pass.

    ``index`` is the IMAP sequence number. UIDs are not used: they are
    unreliable on the servers this runs against, and sequence numbers
    shift once a pass expunges, so an index must never outlive its pass.
    """

    index: int = Field(ge=1, description="Sequence number within the fetch result")
    sender: str = Field(default="", description="Envelope sender address")
    subject: str = ""
    deleted: bool = Field(default=False, description="Already flagged \\Deleted on the server")

    model_config = {"frozen": True}


class SceneCommand(BaseModel):
    """Activate a named scene (``report`` prints the scene report)."""

    kind: Literal[CommandKind.SCENE] = CommandKind.SCENE
    name: str

    model_config = {"frozen": True}


class SolarCommand(BaseModel):
    """Force the battery to charge or discharge."""

    kind: Literal[CommandKind.SOLAR] = CommandKind.SOLAR
    mode: Literal["charge", "discharge"]
    value: int

    model_config = {"frozen": True}


class AlarmCommand(BaseModel):
    """Set the alarm time."""

    kind: Literal[CommandKind.ALARM] = CommandKind.ALARM
    time: str = Field(pattern=r"^\d{2}:\d{2}$", description="HH:MM")

    model_config = {"frozen": True}


class WaterCommand(BaseModel):
    """Run the hot water for a number of minutes."""

    kind: Literal[CommandKind.WATER] = CommandKind.WATER
    hold_minutes: int = Field(default=8, ge=1)

    model_config = {"frozen": True}


class FreeCommand(BaseModel):
    """Free-form date passed through to the free handler."""

    kind: Literal[CommandKind.FREE] = CommandKind.FREE
    date: str = ""

    model_config = {"frozen": True}


Command = Annotated[
    Union[SceneCommand, SolarCommand, AlarmCommand, WaterCommand, FreeCommand],
    Field(discriminator="kind"),
]


class ActionResult(BaseModel):
    """Outcome of one action invocation."""

    kind: CommandKind
    argv: list[str] = Field(default_factory=list)
    returncode: int | None = Field(default=None, description="None when nothing ran")
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    skipped: bool = Field(default=False, description="No-op command, no process launched")

    @property
    def ok(self) -> bool:
        if self.skipped:
            return True
        return self.error is None and self.returncode == 0


# Process exit codes
class ExitCode(int, Enum):
    SUCCESS = 0
    CONFIG_ERROR = 2
    CONNECTION_ERROR = 3
    AUTH_ERROR = 4

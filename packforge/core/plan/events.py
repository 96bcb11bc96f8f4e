from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

EventType = Literal[
    "BuildRequested",
    "DetectStarted",
    "ModuleDetected",
    "DetectCompleted",
    "DetectFailed",
    "LayerStarted",
    "LayerCompleted",
    "LayerRestored",
    "LayerFailed",
    "ModuleSkipped",
    "BuildCompleted",
    "BuildFailed",
]


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class BuildEvent:
    event_type: EventType
    ts: str
    image_ref: str
    plan_id: Optional[str] = None
    module: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def mk(
        event_type: EventType,
        image_ref: str,
        plan_id: Optional[str] = None,
        module: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "BuildEvent":
        return BuildEvent(
            event_type=event_type,
            ts=now_utc_iso(),
            image_ref=image_ref,
            plan_id=plan_id,
            module=module,
            payload=payload or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BuildLog:
    """
    User-facing output of one build.

    `lines` is what a person watching the build would read; `events` is the
    structured record that gets appended to events.log. Neither is part of the
    image identity.
    """

    def __init__(self, image_ref: str = "", *, debug: bool = False):
        self.image_ref = image_ref
        self.debug_enabled = debug
        self.lines: List[str] = []
        self.events: List[BuildEvent] = []

    def line(self, text: str) -> None:
        self.lines.append(text)

    def debug(self, text: str) -> None:
        if self.debug_enabled:
            self.lines.append(text)

    def event(
        self,
        event_type: EventType,
        *,
        plan_id: Optional[str] = None,
        module: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> BuildEvent:
        e = BuildEvent.mk(event_type, self.image_ref, plan_id=plan_id, module=module, payload=payload)
        self.events.append(e)
        return e

    def text(self) -> str:
        return "\n".join(self.lines)

    def __contains__(self, fragment: object) -> bool:
        return any(isinstance(fragment, str) and fragment in ln for ln in self.lines)

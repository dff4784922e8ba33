import logging
from dataclasses import dataclass, field

_LINE_PREFIXES = {
    logging.INFO: "",
    logging.WARNING: "WARN: ",
    logging.ERROR: "ERROR: ",
}


@dataclass
class DeploymentEvent:
    level: int
    message: str


@dataclass
class DeploymentLog:
    """Append-only event buffer for one deployment run.

    Each event is forwarded to ``logger`` as it is recorded, and the buffer is
    returned to the caller with the result so the run can be replayed in order.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    events: list[DeploymentEvent] = field(default_factory=list)

    def _record(self, level: int, message: str) -> None:
        self.events.append(DeploymentEvent(level=level, message=message))
        self.logger.log(level, message)

    def info(self, message: str) -> None:
        self._record(logging.INFO, message)

    def warning(self, message: str) -> None:
        self._record(logging.WARNING, message)

    def error(self, message: str) -> None:
        self._record(logging.ERROR, message)

    def lines(self) -> list[str]:
        return [f"{_LINE_PREFIXES.get(event.level, '')}{event.message}" for event in self.events]

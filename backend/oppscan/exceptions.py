"""Exceptions raised by the scanner."""


class OppScanError(Exception):
    """Base class for scanner errors."""


class TriggerConfigError(OppScanError):
    """A trigger definition can never produce a correct scan."""

    def __init__(self, trigger_key: str, reasons: list[str]):
        self.trigger_key = trigger_key
        self.reasons = reasons
        super().__init__(f"Trigger {trigger_key} rejected: {'; '.join(reasons)}")


class TriggerNotFoundError(OppScanError):
    def __init__(self, trigger_id: int):
        self.trigger_id = trigger_id
        super().__init__(f"Trigger {trigger_id} not found")


class TriggerLockedError(OppScanError):
    """Another scan already holds this trigger."""

    def __init__(self, trigger_id: int):
        self.trigger_id = trigger_id
        super().__init__(f"Trigger {trigger_id} is already being scanned")

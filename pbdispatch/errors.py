"""Errors raised while dispatching or cancelling runs."""

from __future__ import annotations

import uuid


class DispatchError(Exception):
    """Base class for dispatch failures."""


class RecipientNotFoundError(DispatchError):
    """The recipient is not connected."""

    def __init__(self, recipient: uuid.UUID) -> None:
        self.recipient = recipient
        super().__init__(f"Recipient not found: {recipient}")


class RunNotFoundError(DispatchError):
    """No run exists with the given id."""

    def __init__(self, run_id: uuid.UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class RunOrgIdMismatchError(DispatchError):
    """The run belongs to a different organization."""

    def __init__(self, run_id: uuid.UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Invalid org_id for cancel request: {run_id}")


class RunCancelTypeError(DispatchError):
    """The run is not a Satellite run and cannot be cancelled."""

    def __init__(self, run_id: uuid.UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Run not of type RHC Satellite and cannot be canceled: {run_id}")


class RunCancelNotCancelableError(DispatchError):
    """The run has already finished."""

    def __init__(self, run_id: uuid.UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Run has finished running and cannot be canceled: {run_id}")
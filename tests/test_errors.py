import uuid

import pytest

from pbdispatch.errors import (
    DispatchError,
    RecipientNotFoundError,
    RunCancelNotCancelableError,
    RunCancelTypeError,
    RunNotFoundError,
    RunOrgIdMismatchError,
)

RUN_ID = uuid.UUID("b680597e-1a41-46c5-a8d4-12d9e8578023")


@pytest.mark.parametrize(
    "cls, prefix",
    [
        (RunNotFoundError, "Run not found: "),
        (RunOrgIdMismatchError, "Invalid org_id for cancel request: "),
        (RunCancelTypeError, "Run not of type RHC Satellite and cannot be canceled: "),
        (RunCancelNotCancelableError, "Run has finished running and cannot be canceled: "),
    ],
)
def test_run_error_messages(cls, prefix):
    error = cls(RUN_ID)
    assert str(error) == prefix + str(RUN_ID)
    assert error.run_id == RUN_ID


def test_recipient_not_found_message():
    recipient = uuid.UUID("b5fbb740-5590-45a4-8240-89192dc49199")
    error = RecipientNotFoundError(recipient)
    assert str(error) == "Recipient not found: b5fbb740-5590-45a4-8240-89192dc49199"
    assert error.recipient == recipient


@pytest.mark.parametrize(
    "error",
    [
        RecipientNotFoundError(RUN_ID),
        RunNotFoundError(RUN_ID),
        RunOrgIdMismatchError(RUN_ID),
        RunCancelTypeError(RUN_ID),
        RunCancelNotCancelableError(RUN_ID),
    ],
)
def test_all_errors_are_dispatch_errors(error):
    with pytest.raises(DispatchError) as info:
        raise error
    assert info.value is error
class BaseRemoteValidatorError(Exception):
    """
    The base class for all remote validator errors.
    """

    pass


class BeaconNodeRequestFailure(BaseRemoteValidatorError):
    """
    Raised when a request to the beacon node could not be completed: the
    connection failed, the call timed out, the node answered with a non-success
    status or the response could not be understood.
    """

    pass


class BeaconNodeRejection(BaseRemoteValidatorError):
    """
    Raised when the beacon node received a request but refused it, e.g. a
    submitted artifact carries a bad signature. Resubmitting cannot succeed.
    """

    pass


class DutyFetchFailure(BaseRemoteValidatorError):
    """
    Raised when every attempt to load duties (or fork info) from the beacon
    node failed.
    """

    pass


class InvalidRequest(BaseRemoteValidatorError):
    """
    Raised by the validator API handlers when a request is missing data or
    carries data that cannot be parsed.
    """

    pass

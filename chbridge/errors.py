"""Error taxonomy surfaced to HTTP callers as ``{success: false, error}``."""


class BridgeError(Exception):
    """Base class for every failure reported back to the caller."""

    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'success': False, 'error': self.message}


class MissingParameters(BridgeError):
    pass


class InvalidParameter(BridgeError):
    pass


class SourceUnreachable(BridgeError):
    pass


class UnsupportedFormat(BridgeError):
    pass


class InvalidIdentifier(BridgeError):
    pass


class InvalidColumnSpec(BridgeError):
    pass


class TableCreationFailed(BridgeError):
    pass


class QueryFailed(BridgeError):
    pass


class BatchInsertFailed(BridgeError):
    """An insert failed mid-run. Batches committed before it stay committed."""

    def __init__(self, message, processed=0):
        super().__init__(message)
        self.processed = processed

    def to_dict(self):
        payload = super().to_dict()
        payload['processed'] = self.processed
        return payload

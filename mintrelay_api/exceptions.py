"""Error hierarchy for payment verification and minting.

- MintRelayError: Base for all relay errors, carries the HTTP status
- PermanentError: Retrying with the same input will not change the outcome
- TransientError: May succeed later (pending receipts, upstream outages)
"""


class MintRelayError(Exception):
    """Base exception for all relay errors."""

    status_code = 500

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class PermanentError(MintRelayError):
    """Error that will not succeed on retry."""

    pass


class TransientError(MintRelayError):
    """Error that may succeed on retry."""

    pass


# Validation
class InvalidRequestError(PermanentError):
    """Malformed or missing request fields."""

    status_code = 400


# Policy
class PolicyError(PermanentError):
    """Payment does not satisfy the mint policy."""

    status_code = 400


class AlreadyProcessedError(PolicyError):
    """Payment transaction already triggered a mint."""

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__("txHash already processed")


class NoMatchingTransferError(PolicyError):
    """No qualifying transfer found in the payment receipt."""

    pass


class InsufficientConfirmationsError(TransientError):
    """Payment is mined but not yet deep enough; retry after waiting."""

    status_code = 400

    def __init__(self, actual: int, required: int):
        self.actual = actual
        self.required = required
        super().__init__(
            f"Transaction has {actual} confirmations; require {required}"
        )


class ReceiptNotFoundError(TransientError):
    """Payment transaction is not mined yet (or unknown)."""

    status_code = 404


# Upstream / configuration
class UpstreamUnavailableError(TransientError):
    """RPC endpoint unreachable, erroring or timed out."""

    status_code = 500


class RelayerNotConfiguredError(PermanentError):
    """No relayer private key configured."""

    status_code = 500

    def __init__(self, reason: str = "Relayer private key not configured"):
        super().__init__(reason)


class LedgerBackendError(TransientError):
    """Idempotency store unreachable or returned an error."""

    status_code = 500


# Minting
class MintError(MintRelayError):
    """Base exception for mint failures."""

    status_code = 500


class MintSubmissionError(MintError, TransientError):
    """Mint transaction was never broadcast."""

    pass


class MintRevertedError(MintError, PermanentError):
    """Mint transaction was mined but reverted (gas was spent)."""

    def __init__(self, reason: str, tx_hash: str, block_number: int):
        self.tx_hash = tx_hash
        self.block_number = block_number
        super().__init__(reason)


class MintOutcomeUnknownError(MintError, TransientError):
    """Mint transaction was broadcast but its receipt could not be obtained."""

    def __init__(self, reason: str, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(reason)

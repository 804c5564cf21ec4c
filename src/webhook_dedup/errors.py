class DedupError(RuntimeError):
    pass


class StoreUnavailable(DedupError):
    """The record store could not be reached or answered with an unexpected error.

    Callers must treat this as "lock state unknown" and not run business work.
    """


class SignatureInvalid(DedupError):
    pass

class WalletAuthError(Exception):
    pass


class SessionNotFound(WalletAuthError):
    pass


class DecodeError(WalletAuthError):
    pass


class BackendUnavailable(WalletAuthError):
    pass


class ValidationError(WalletAuthError):
    pass

from access_core.data_model.token import InvalidReason


class TokenError(Exception):
    pass


class TokenNotRedeemable(TokenError):
    reason: InvalidReason = None

    def __init__(self, code: str, reason: InvalidReason = None):
        if reason is not None:
            self.reason = reason
        self.code = code
        super().__init__(f"token {code[:6]}... is not redeemable: {self.reason.value}")


class InvalidFormat(TokenNotRedeemable):
    reason = InvalidReason.BAD_FORMAT


class TokenNotFound(TokenNotRedeemable):
    reason = InvalidReason.NOT_FOUND


class TokenInactive(TokenNotRedeemable):
    reason = InvalidReason.INACTIVE


class TokenExpired(TokenNotRedeemable):
    reason = InvalidReason.EXPIRED


class TokenExhausted(TokenNotRedeemable):
    reason = InvalidReason.EXHAUSTED


class AlreadyRedeemed(TokenNotRedeemable):
    reason = InvalidReason.ALREADY_REDEEMED


_BY_REASON = {
    cls.reason: cls
    for cls in (InvalidFormat, TokenNotFound, TokenInactive, TokenExpired, TokenExhausted, AlreadyRedeemed)
}


def not_redeemable(code: str, reason: InvalidReason) -> TokenNotRedeemable:
    return _BY_REASON[reason](code)


class DuplicateCode(TokenError):
    pass


class StorageUnavailable(TokenError):
    pass

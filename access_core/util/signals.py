from blinker import Signal

on_tokens_created = Signal()
on_token_redeemed = Signal()
on_token_deactivated = Signal()

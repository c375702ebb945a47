from __future__ import annotations

from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
shop_domain_var: ContextVar[str | None] = ContextVar("shop_domain", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_shop_domain(value: str | None) -> Token[str | None]:
    return shop_domain_var.set(value)


def reset_shop_domain(token: Token[str | None]) -> None:
    shop_domain_var.reset(token)


def get_shop_domain() -> str | None:
    return shop_domain_var.get()


"""Mascaramento de dados sensíveis antes de irem para log ou resposta."""

from __future__ import annotations

from femisse.documents import digits


def mask_email(email: str | None) -> str | None:
    if not email or email.count("@") != 1:
        return None
    local, domain = email.split("@")
    if not local or not domain:
        return None
    return f"{local[:3]}***@{domain}"


def mask_cpf(cpf: str | None) -> str | None:
    cleaned = digits(cpf)
    if len(cleaned) != 11:
        return None
    return f"***.***.*{cleaned[-2:]}"


def mask_phone(phone: str | None) -> str | None:
    cleaned = digits(phone)
    if len(cleaned) not in (10, 11):
        return None
    return f"({cleaned[:2]}) *****-{cleaned[-4:]}"


def mask_card_number(last_four: str | None) -> str:
    return f"**** **** **** {(last_four or '')[-4:] or '****'}"

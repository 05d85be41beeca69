from __future__ import annotations


def digits(value: str | None) -> str:
    return "".join(ch for ch in (value or "") if ch.isdigit())


def normalize_phone(value: str | None) -> str:
    result = digits(value)
    if result.startswith("55") and len(result) in (12, 13):
        result = result[2:]
    if result.startswith("0") and len(result) in (11, 12):
        result = result[1:]
    return result


def is_valid_phone(value: str | None) -> bool:
    return len(normalize_phone(value)) in (10, 11)


def normalize_zip_code(value: str | None) -> str:
    return digits(value)[:8]


def format_zip_code(value: str | None) -> str:
    zip_code = normalize_zip_code(value)
    if len(zip_code) != 8:
        return zip_code
    return f"{zip_code[:5]}-{zip_code[5:]}"


def _cpf_check_digit(base: str) -> int:
    weight = len(base) + 1
    total = sum(int(ch) * (weight - idx) for idx, ch in enumerate(base))
    digit = 11 - (total % 11)
    return 0 if digit > 9 else digit


def is_valid_cpf(value: str | None) -> bool:
    cpf = digits(value)
    if len(cpf) != 11 or cpf == cpf[0] * 11:
        return False
    first = _cpf_check_digit(cpf[:9])
    if int(cpf[9]) != first:
        return False
    return int(cpf[10]) == _cpf_check_digit(cpf[:10])

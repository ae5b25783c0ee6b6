"""Merchant key normalization.

Card statements print the same merchant in many shapes. This module reduces a
raw description to a short, stable key so that one learned rule covers all of
them:

    "PAG*JoseDaSilva SAO PAULO BR"  -> "JOSEDASILVA"
    "UBER *TRIP 4029357733"         -> "UBER"
    "MERCADOLIVRE*MERC DO JOAO"     -> "MERCADOLIVRE"
"""

from __future__ import annotations

import re
import unicodedata

MAX_KEY_LENGTH = 50
MIN_KEY_LENGTH = 2

# Number of leading tokens kept when no known merchant matches
PRIMARY_TOKEN_COUNT = 2

_WHITESPACE = re.compile(r"\s+")
_LONG_NUMBER = re.compile(r"\d{6,}")
_SHORT_NUMBER = re.compile(r"\b\d{1,5}\b")
_SPECIAL_CHARS = re.compile(r"[^A-Z0-9\s]")
_PURE_NUMBER = re.compile(r"\d+")

PAYMENT_PREFIXES = ("PAGTO", "PGTO", "PAG", "PIX", "PG")

NOISE_TOKENS = frozenset(
    {
        # Locations
        "BR", "BRASIL", "BRAZIL",
        "SAO", "PAULO", "SP", "RJ", "MG", "RS", "PR", "SC", "BA", "PE", "CE",
        "RIO", "JANEIRO", "BELO", "HORIZONTE", "PORTO", "ALEGRE", "CURITIBA",
        "FLORIANOPOLIS", "SALVADOR", "RECIFE", "FORTALEZA", "BRASILIA",
        # Legal entity suffixes
        "LTDA", "ME", "EPP", "EIRELI", "SA", "SS", "FILIAL",
        # Business suffixes
        "COM", "NET", "ORG", "IO", "APP", "LOJA", "STORE", "SHOP",
        # Transaction types
        "COMPRA", "PURCHASE", "PAGAMENTO", "PAYMENT",
        "DEBITO", "CREDITO", "DEBIT", "CREDIT",
        "PARCELA", "PARC", "INSTALLMENT",
        # Service indicators
        "TRIP", "RIDE", "EATS", "DELIVERY", "ENTREGA",
        # Connectives
        "DE", "DO", "DA", "DOS", "DAS", "E", "THE", "AND", "OF",
    }
)

# Longest first, so "MERCADOPAGO" wins over a shorter prefix of it
KNOWN_MERCHANTS = tuple(
    sorted(
        {
            "UBER", "IFOOD", "RAPPI", "NETFLIX", "SPOTIFY", "AMAZON", "MERCADOLIVRE",
            "MERCADOPAGO", "PICPAY", "NUBANK", "ITAU", "BRADESCO", "SANTANDER",
            "GOOGLE", "APPLE", "MICROSOFT", "STEAM", "PLAYSTATION", "XBOX",
            "SHELL", "IPIRANGA", "PETROBRAS", "ALE",
            "CARREFOUR", "EXTRA", "PAO", "ACUCAR", "ATACADAO", "ASSAI", "BIG",
            "DROGASIL", "DROGARIA", "PACHECO", "PANVEL", "RAIA",
            "RENNER", "RIACHUELO", "CEA", "MARISA", "HERING",
            "MCDONALDS", "BURGER", "KING", "SUBWAY", "STARBUCKS", "OUTBACK",
            "CLARO", "VIVO", "TIM", "OI", "SKY",
            "ENEL", "CPFL", "LIGHT", "CEMIG", "COPEL", "SABESP", "SANEPAR",
        },
        key=lambda m: (-len(m), m),
    )
)


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.category(ch).startswith("M"))


def _strip_payment_prefix(text: str) -> str:
    """Drop a leading "PAG*", "PGTO " etc. added by payment processors."""
    for prefix in PAYMENT_PREFIXES:
        if not text.startswith(prefix):
            continue
        remaining = text[len(prefix):]
        if remaining and not remaining[0].isalnum():
            return remaining[1:].strip()
    return text


def _significant_tokens(text: str) -> list[str]:
    return [
        token
        for token in _WHITESPACE.split(text.strip())
        if token
        and token not in NOISE_TOKENS
        and not _PURE_NUMBER.fullmatch(token)
        and len(token) >= 2
    ]


def _match_known_merchant(tokens: list[str]) -> str | None:
    if not tokens:
        return None
    first = tokens[0]
    for merchant in KNOWN_MERCHANTS:
        if first == merchant:
            return merchant
    # Glued forms such as "IFOODRESTAURANTE"
    for merchant in KNOWN_MERCHANTS:
        if first.startswith(merchant):
            return merchant
    return None


def normalize_merchant_key(description: str | None) -> str | None:
    """Reduce a transaction description to its merchant key.

    Returns None when nothing of at least two characters survives
    normalization (blank input, or only noise tokens and numbers).
    """
    if not description or not description.strip():
        return None

    text = _strip_accents(description.upper().strip())
    text = _strip_payment_prefix(text)
    text = _LONG_NUMBER.sub(" ", text)
    text = _SPECIAL_CHARS.sub(" ", text)

    tokens = _significant_tokens(text)
    known = _match_known_merchant(tokens)
    if known:
        return known

    key = " ".join(tokens[:PRIMARY_TOKEN_COUNT])
    key = _SHORT_NUMBER.sub(" ", key)
    key = _WHITESPACE.sub("", key)[:MAX_KEY_LENGTH]

    return key if len(key) >= MIN_KEY_LENGTH else None

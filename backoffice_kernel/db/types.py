"""
Module: backoffice_kernel.db.types
Responsibility: Column-level precision constants, the canonical rounding
    function and ISO 4217 currency validation.  Every model and service uses
    these definitions so amounts are stored and rounded identically.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Column precision: amounts and quantities are stored as Numeric(38, 9)
      on PostgreSQL (exact text on other dialects, see db/base.py).
    - Currency rounding: round_money() is the ONLY sanctioned rounding
      function; ROUND_HALF_UP at 2 places for currency amounts.
    - No floats anywhere in the kernel.

Failure modes:
    - InvalidCurrencyError on an invalid ISO 4217 code.
"""

from decimal import ROUND_HALF_UP, Context, Decimal

from backoffice_kernel.exceptions import InvalidCurrencyError

# Storage precision: 38 digits total, 9 decimal places
MONEY_PRECISION = 38
MONEY_SCALE = 9
# Largest magnitude representable at that precision
MONEY_MAX_ABS = Decimal(10) ** (MONEY_PRECISION - MONEY_SCALE)

CURRENCY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTIZE_CONTEXT = Context(prec=MONEY_PRECISION * 2)


def round_money(
    value: Decimal,
    decimal_places: int = CURRENCY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Quantize ``value`` to ``decimal_places``, half-up unless told otherwise."""
    exponent = Decimal(1).scaleb(-decimal_places)
    return value.quantize(exponent, rounding=rounding, context=_QUANTIZE_CONTEXT)


# Active ISO 4217 alphabetic codes, including fund and metal codes
ISO_4217_CURRENCIES: frozenset[str] = frozenset("""
    AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND
    BOB BOV BRL BSD BTN BWP BYN BZD CAD CDF CHE CHF CHW CLF CLP CNY COP COU
    CRC CUC CUP CVE CZK DJF DKK DOP DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS
    GIP GMD GNF GTQ GYD HKD HNL HRK HTG HUF IDR ILS INR IQD IRR ISK JMD JOD
    JPY KES KGS KHR KMF KPW KRW KWD KYD KZT LAK LBP LKR LRD LSL LYD MAD MDL
    MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MXV MYR MZN NAD NGN NIO NOK NPR
    NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB RWF SAR SBD SCR SDG
    SEK SGD SHP SLE SLL SOS SRD SSP STN SVC SYP SZL THB TJS TMT TND TOP TRY
    TTD TWD TZS UAH UGX USD USN UYI UYU UYW UZS VED VES VND VUV WST XAF XAG
    XAU XBA XBB XBC XBD XCD XDR XOF XPD XPF XPT XSU XTS XUA XXX YER ZAR ZMW
    ZWL
""".split())


def validate_currency(currency: str) -> str:
    """Return ``currency`` upper-cased and trimmed, or raise InvalidCurrencyError."""
    if not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))
    code = currency.strip().upper()
    if code not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return code

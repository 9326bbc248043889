"""
ZATCA QR codec - TLV encoding of the simplified-invoice QR payload.

Wire format (strict external contract, read by scanning apps):

    for tag in 1..5:  tag (1 byte) || length (1 byte) || UTF-8 value
    payload = Base64(concatenation), standard alphabet, no line wrapping

    1 seller name
    2 VAT registration number
    3 timestamp, ISO-8601 UTC with "Z"
    4 invoice total (VAT inclusive), 2 decimals
    5 VAT total, 2 decimals

The length is a single raw byte, so each value must stay within 255
encoded bytes. Longer values raise ``TlvFieldTooLongError``; they are
never truncated.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from pos_kernel.domain.invoice import InvoiceKind, InvoiceTotals
from pos_kernel.domain.values import format_amount
from pos_kernel.exceptions import TlvDecodeError, TlvFieldTooLongError
from pos_kernel.logging_config import get_logger

logger = get_logger("engines.zatca")

TAG_SELLER_NAME = 1
TAG_VAT_NUMBER = 2
TAG_TIMESTAMP = 3
TAG_INVOICE_TOTAL = 4
TAG_VAT_TOTAL = 5

MAX_VALUE_BYTES = 255


@dataclass(frozen=True)
class TlvField:
    tag: int
    length: int
    value: str


def encode_tlv_field(tag: int, value: str) -> bytes:
    """Encode one field as tag || length || UTF-8 value."""
    if not 0 <= tag <= 255:
        raise ValueError(f"TLV tag must fit in one byte, got {tag}")
    value_bytes = value.encode("utf-8")
    if len(value_bytes) > MAX_VALUE_BYTES:
        logger.error("zatca_field_too_long", extra={
            "tag": tag,
            "byte_length": len(value_bytes),
        })
        raise TlvFieldTooLongError(tag, len(value_bytes))
    return bytes((tag, len(value_bytes))) + value_bytes


def encode_tlv(fields: Sequence[tuple[int, str]]) -> bytes:
    """Concatenate fields in the order given."""
    return b"".join(encode_tlv_field(tag, value) for tag, value in fields)


def encode_zatca_qr(
    seller_name: str,
    vat_number: str,
    iso_timestamp: str,
    invoice_total: str,
    vat_total: str,
) -> str:
    """
    Build the Base64 QR payload from the five ZATCA fields.

    All values are already-formatted strings; see ``build_zatca_payload``
    for formatting from invoice totals.
    """
    raw = encode_tlv((
        (TAG_SELLER_NAME, seller_name),
        (TAG_VAT_NUMBER, vat_number),
        (TAG_TIMESTAMP, iso_timestamp),
        (TAG_INVOICE_TOTAL, invoice_total),
        (TAG_VAT_TOTAL, vat_total),
    ))
    return base64.b64encode(raw).decode("ascii")


def decode_tlv(payload: str | bytes) -> tuple[TlvField, ...]:
    """
    Parse a Base64 TLV payload back into its fields.

    Raises:
        TlvDecodeError: invalid Base64, truncated field, or non-UTF-8 value.
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TlvDecodeError(0, f"invalid base64: {e}") from e

    fields: list[TlvField] = []
    offset = 0
    while offset < len(raw):
        if offset + 2 > len(raw):
            raise TlvDecodeError(offset, "truncated header")
        tag = raw[offset]
        length = raw[offset + 1]
        start = offset + 2
        end = start + length
        if end > len(raw):
            raise TlvDecodeError(offset, f"value of tag {tag} needs {length} bytes")
        try:
            value = raw[start:end].decode("utf-8")
        except UnicodeDecodeError as e:
            raise TlvDecodeError(start, f"tag {tag} is not UTF-8") from e
        fields.append(TlvField(tag=tag, length=length, value=value))
        offset = end
    return tuple(fields)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 in UTC with a ``Z`` suffix. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class ZatcaPayload:
    """The five QR fields, formatted, in tag order. Built once per receipt."""

    seller_name: str
    vat_number: str
    timestamp: str
    invoice_total: str
    vat_total: str

    def fields(self) -> tuple[tuple[int, str], ...]:
        return (
            (TAG_SELLER_NAME, self.seller_name),
            (TAG_VAT_NUMBER, self.vat_number),
            (TAG_TIMESTAMP, self.timestamp),
            (TAG_INVOICE_TOTAL, self.invoice_total),
            (TAG_VAT_TOTAL, self.vat_total),
        )

    def to_base64(self) -> str:
        return encode_zatca_qr(
            self.seller_name,
            self.vat_number,
            self.timestamp,
            self.invoice_total,
            self.vat_total,
        )


def build_zatca_payload(
    seller_name: str,
    vat_number: str,
    invoice_date: datetime,
    totals: InvoiceTotals,
) -> ZatcaPayload:
    """Format finalized totals for the QR code: net as total, tax as VAT."""
    return ZatcaPayload(
        seller_name=seller_name,
        vat_number=vat_number,
        timestamp=format_timestamp(invoice_date),
        invoice_total=format_amount(totals.net),
        vat_total=format_amount(totals.tax),
    )


def classify_invoice(vat_enabled: bool, customer_tax_number: str | None) -> InvoiceKind:
    """
    Receipt title.

    Plain sales invoice when the invoice was created without VAT; a full
    tax invoice for a VAT-registered customer; a simplified tax invoice
    otherwise.
    """
    if not vat_enabled:
        return InvoiceKind.SALES_INVOICE
    if customer_tax_number:
        return InvoiceKind.TAX_INVOICE
    return InvoiceKind.SIMPLIFIED_TAX_INVOICE

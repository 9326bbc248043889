"""
User-facing messages for recoverable outcomes.

Keyed by the ``code`` carried by exceptions, guard failures and payment
rejections. Arabic is the default locale of the point-of-sale screens.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pos_kernel.domain.values import format_amount

DEFAULT_LOCALE = "ar"

_MESSAGES: dict[str, dict[str, str]] = {
    "EMPTY_INVOICE": {
        "ar": "لا يمكن حفظ فاتورة بدون أصناف",
        "en": "Add at least one item before saving the invoice",
    },
    "MISSING_CUSTOMER": {
        "ar": "يجب اختيار العميل للفاتورة الآجلة",
        "en": "Select a customer for a credit invoice",
    },
    "LINE_NOT_FOUND": {
        "ar": "السطر رقم {index} غير موجود",
        "en": "Line {index} does not exist",
    },
    "INVALID_QUANTITY": {
        "ar": "الكمية {quantity} غير صالحة",
        "en": "Quantity {quantity} is not valid",
    },
    "INVALID_AMOUNT": {
        "ar": "لا يمكن أن تكون القيمة سالبة",
        "en": "{field_name} cannot be negative",
    },
    "ITEM_NOT_FOUND": {
        "ar": "الصنف {query} غير موجود",
        "en": "No item matches {query}",
    },
    "DISCOUNT_LIMIT_EXCEEDED": {
        "ar": "الخصم يتجاوز الحد المسموح ({max_percentage}%)",
        "en": "Discount exceeds the allowed maximum ({max_percentage}%)",
    },
    "INSUFFICIENT_STOCK": {
        "ar": "الرصيد غير كافٍ للصنف {item_ref}",
        "en": "Insufficient stock for item {item_ref}",
    },
    "BELOW_COST": {
        "ar": "سعر البيع {unit_price} للصنف {item_ref} أقل من التكلفة {cost}",
        "en": "Price {unit_price} for item {item_ref} is below cost {cost}",
    },
    "CREDIT_LIMIT_EXCEEDED": {
        "ar": "تجاوز الحد الائتماني: الرصيد المتوقع {projected_balance} والحد {credit_limit}",
        "en": "Credit limit exceeded: projected balance {projected_balance}, limit {credit_limit}",
    },
    "APPROVAL_REQUIRED": {
        "ar": "الرصيد المتوقع {projected_balance} يتجاوز الحد {credit_limit} بمقدار {excess}. هل تريد المتابعة؟",
        "en": "Projected balance {projected_balance} exceeds limit {credit_limit} by {excess}. Continue?",
    },
    "PERSISTENCE_FAILURE": {
        "ar": "تعذر حفظ الفاتورة، حاول مرة أخرى",
        "en": "The invoice could not be saved, please retry",
    },
    "CREDIT_WITH_INSTRUMENT": {
        "ar": "الفاتورة الآجلة لا تقبل خزنة أو بنك",
        "en": "A credit invoice cannot be paid into a safe or bank",
    },
    "MISSING_INSTRUMENT": {
        "ar": "يجب اختيار الخزنة أو البنك",
        "en": "Select a safe or bank",
    },
    "AMBIGUOUS_INSTRUMENT": {
        "ar": "اختر وسيلة دفع واحدة فقط",
        "en": "Select exactly one payment instrument",
    },
    "NO_TARGET_CONFIGURED": {
        "ar": "لا توجد خزنة أو بنك معرف لهذا الفرع",
        "en": "No safe or bank is configured for this branch",
    },
    "UNKNOWN_INSTRUMENT": {
        "ar": "وسيلة الدفع المختارة غير متاحة",
        "en": "The selected payment instrument is not available",
    },
    "SPLIT_TARGETS_REQUIRED": {
        "ar": "الدفع المجزأ يتطلب اختيار خزنة وبنك",
        "en": "Split payment requires both a safe and a bank",
    },
    "NEGATIVE_AMOUNT": {
        "ar": "لا يمكن أن يكون مبلغ الدفع سالباً",
        "en": "Payment amounts cannot be negative",
    },
    "SPLIT_UNBALANCED": {
        "ar": "مجموع النقدي والبنك ({paid}) لا يساوي صافي الفاتورة ({net})",
        "en": "Cash plus bank ({paid}) does not equal the invoice net ({net})",
    },
    "INSUFFICIENT_TENDER": {
        "ar": "المبلغ المدفوع {tendered} أقل من صافي الفاتورة {net}",
        "en": "Tendered {tendered} is less than the invoice net {net}",
    },
}


def _render(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format_amount(value)
    return value


def localize(code: str, locale: str = DEFAULT_LOCALE, **fields: Any) -> str:
    """
    Render the message for ``code``.

    Unknown codes fall back to the code itself; unknown locales fall back
    to the default locale.
    """
    templates = _MESSAGES.get(code)
    if templates is None:
        return code
    template = templates.get(locale) or templates[DEFAULT_LOCALE]
    rendered = {k: _render(v) for k, v in fields.items()}
    try:
        return template.format(**rendered)
    except KeyError:
        return template

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, time, timezone
from decimal import Decimal

from ksiegai.business.customers.models import Customer
from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.core.money import q


FA3_NAMESPACE = "http://crd.gov.pl/wzor/2025/06/25/13775/"
FA3_SYSTEM_CODE = "FA (3)"
FA3_SCHEMA_VERSION = "1-0E"
SYSTEM_INFO = "KsiegaI"
_NO_VAT_CODES = {"zw", "np", "oo"}


def _sub(parent: ET.Element, tag: str, text: str | None = None, **attrs: str) -> ET.Element:
    element = ET.SubElement(parent, tag, attrs)
    if text is not None:
        element.text = text
    return element


def _amount(value: Decimal) -> str:
    return f"{q(value):.2f}"


def _quantity(value: Decimal) -> str:
    return format(Decimal(value).normalize(), "f")


def _clip(text: str, limit: int) -> str:
    return text[:limit]


def _address(parent: ET.Element, *, country: str, street: str | None, postal_code: str | None, city: str | None) -> None:
    address = _sub(parent, "Adres")
    _sub(address, "KodKraju", country or "PL")
    if street:
        _sub(address, "AdresL1", _clip(street, 200))
    if city:
        line2 = f"{postal_code} {city}" if postal_code else city
        _sub(address, "AdresL2", _clip(line2, 200))


def document_timestamp(invoice: Invoice) -> datetime:
    """Generation time embedded in the XML, fixed per invoice so the document hash is stable."""

    return datetime.combine(invoice.issue_date, time(0, 0), tzinfo=timezone.utc)


def build_invoice_xml(
    invoice: Invoice,
    profile: BusinessProfile,
    customer: Customer | None = None,
    *,
    generated_at: datetime | None = None,
) -> str:
    """Render an income invoice as an FA(3) structured e-invoice."""

    root = ET.Element("Faktura", {"xmlns": FA3_NAMESPACE})

    header = _sub(root, "Naglowek")
    _sub(header, "KodFormularza", "FA", kodSystemowy=FA3_SYSTEM_CODE, wersjaSchemy=FA3_SCHEMA_VERSION)
    _sub(header, "WariantFormularza", "3")
    _sub(header, "DataWytworzeniaFa", (generated_at or document_timestamp(invoice)).isoformat())
    _sub(header, "SystemInfo", SYSTEM_INFO)

    seller = _sub(root, "Podmiot1")
    seller_id = _sub(seller, "DaneIdentyfikacyjne")
    _sub(seller_id, "NIP", profile.nip)
    _sub(seller_id, "Nazwa", _clip(profile.name, 240))
    _address(seller, country=profile.country, street=profile.street, postal_code=profile.postal_code, city=profile.city)

    buyer = _sub(root, "Podmiot2")
    buyer_id = _sub(buyer, "DaneIdentyfikacyjne")
    buyer_nip = (customer.nip if customer is not None else None) or invoice.counterparty_nip
    if buyer_nip:
        _sub(buyer_id, "NIP", buyer_nip)
    else:
        _sub(buyer_id, "BrakID", "1")
    buyer_name = (customer.name if customer is not None else None) or invoice.counterparty_name or ""
    _sub(buyer_id, "Nazwa", _clip(buyer_name, 240))
    if customer is not None and (customer.street or customer.city):
        _address(buyer, country=customer.country, street=customer.street, postal_code=customer.postal_code, city=customer.city)

    fa = _sub(root, "Fa")
    _sub(fa, "KodWaluty", invoice.currency)
    _sub(fa, "P_1", invoice.issue_date.isoformat())
    _sub(fa, "P_2", _clip(invoice.number, 256))
    if invoice.sale_date is not None:
        _sub(fa, "P_6", invoice.sale_date.isoformat())
    _totals(fa, invoice)
    _sub(fa, "RodzajFaktury", "KOR" if invoice.document_type == "CORRECTION" else "VAT")

    for position, line in enumerate(invoice.lines, start=1):
        row = _sub(fa, "FaWiersz")
        _sub(row, "NrWierszaFa", str(position))
        _sub(row, "P_7", _clip(line.name, 256))
        _sub(row, "P_8A", _clip(line.unit, 30))
        _sub(row, "P_8B", _quantity(line.quantity))
        _sub(row, "P_9A", _amount(line.unit_price_net))
        _sub(row, "P_11", _amount(line.net_amount))
        _sub(row, "P_12", line.vat_rate)
        if line.vat_rate not in _NO_VAT_CODES:
            _sub(row, "P_11Vat", _amount(line.vat_amount))

    if invoice.due_date is not None:
        payment = _sub(fa, "Platnosc")
        terms = _sub(payment, "TerminPlatnosci")
        _sub(terms, "Termin", invoice.due_date.isoformat())

    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


def _totals(fa: ET.Element, invoice: Invoice) -> None:
    # P_13_1/P_14_1: 23%, P_13_2/P_14_2: 8%, P_13_3/P_14_3: 5%, P_13_6_1: 0%, P_13_7: exempt
    net_fields = {"23": "P_13_1", "8": "P_13_2", "5": "P_13_3", "0": "P_13_6_1", "zw": "P_13_7", "np": "P_13_8", "oo": "P_13_10"}
    vat_fields = {"23": "P_14_1", "8": "P_14_2", "5": "P_14_3"}
    net: dict[str, Decimal] = {}
    vat: dict[str, Decimal] = {}
    for line in invoice.lines:
        net[line.vat_rate] = net.get(line.vat_rate, Decimal("0")) + Decimal(line.net_amount)
        if line.vat_rate in vat_fields:
            vat[line.vat_rate] = vat.get(line.vat_rate, Decimal("0")) + Decimal(line.vat_amount)
    for code, field_name in net_fields.items():
        if code in net:
            _sub(fa, field_name, _amount(net[code]))
            if code in vat:
                _sub(fa, vat_fields[code], _amount(vat[code]))
    _sub(fa, "P_15", _amount(invoice.total_gross))

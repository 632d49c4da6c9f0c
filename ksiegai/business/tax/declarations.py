from __future__ import annotations

import calendar
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from decimal import Decimal

from ksiegai.business.invoicing.models import Invoice
from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.business.tax.schemas import GeneratedDeclaration, PitAdvanceResult, ZusContributions
from ksiegai.core.money import q


JPK_V7M_NAMESPACE = "http://jpk.mf.gov.pl/wzor/2022/02/17/02171/"
PIT_ADVANCE_NAMESPACE = "http://crd.gov.pl/xml/schematy/dziedzinowe/mf/2016/01/25/eD/PIT4/"
ZUS_DRA_NAMESPACE = "http://www.zus.pl/2022/DRA"
SYSTEM_NAME = "KsiegaI"

# (net field, vat field) per VAT rate code in the sales register
SALES_FIELDS: dict[str, tuple[str, str | None]] = {
    "23": ("K_10", "K_11"),
    "8": ("K_12", "K_13"),
    "5": ("K_14", "K_15"),
    "0": ("K_17", None),
    "zw": ("K_18", None),
    "np": ("K_19", None),
    "oo": ("K_19", None),
}
PURCHASE_FIELDS: dict[str, tuple[str, str | None]] = {
    "23": ("K_40", "K_41"),
    "8": ("K_42", "K_43"),
    "5": ("K_44", "K_45"),
    "0": ("K_46", None),
    "zw": ("K_47", None),
    "np": ("K_48", None),
    "oo": ("K_48", None),
}


def _sub(parent: ET.Element, tag: str, text: str | None = None, **attrs: str) -> ET.Element:
    element = ET.SubElement(parent, tag, attrs)
    if text is not None:
        element.text = text
    return element


def _serialize(root: ET.Element) -> str:
    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


def _amount(value: Decimal) -> str:
    return f"{q(value):.2f}"


def _header(root: ET.Element, *, code: str, system_code: str, year: int, month: int) -> None:
    last_day = calendar.monthrange(year, month)[1]
    header = _sub(root, "Naglowek")
    _sub(header, "KodFormularza", code, kodSystemowy=system_code, wersjaSchemy="1-0E")
    _sub(header, "WariantFormularza", "3" if code == "JPK_VAT" else "1")
    _sub(header, "DataWytworzeniaJPK", datetime.now(timezone.utc).replace(microsecond=0).isoformat())
    _sub(header, "NazwaSystemu", SYSTEM_NAME)
    _sub(header, "CelZlozenia", "1", poz="P_7")
    _sub(header, "DataOd", f"{year:04d}-{month:02d}-01")
    _sub(header, "DataDo", f"{year:04d}-{month:02d}-{last_day:02d}")


def _subject(root: ET.Element, profile: BusinessProfile) -> None:
    subject = _sub(root, "Podmiot1", rola="Podatnik")
    if profile.entity_type == "JDG":
        person = _sub(subject, "OsobaFizyczna")
        _sub(person, "NIP", profile.nip)
        _sub(person, "PelnaNazwa", profile.name)
    else:
        company = _sub(subject, "OsobaNiefizyczna")
        _sub(company, "NIP", profile.nip)
        _sub(company, "PelnaNazwa", profile.name)
        if profile.regon:
            _sub(company, "REGON", profile.regon)


def _register_row(
    parent: ET.Element,
    tag: str,
    lp_tag: str,
    position: int,
    invoice: Invoice,
    fields: dict[str, tuple[str, str | None]],
) -> tuple[Decimal, Decimal]:
    rate = Decimal(invoice.exchange_rate) if invoice.currency != "PLN" else Decimal("1")
    row = _sub(parent, tag)
    _sub(row, lp_tag, str(position))
    _sub(row, "NrKontrahenta", invoice.counterparty_nip or "BRAK")
    _sub(row, "NazwaKontrahenta", invoice.counterparty_name or "BRAK")
    _sub(row, "DowodSprzedazy" if tag == "SprzedazWiersz" else "DowodZakupu", invoice.number)
    _sub(row, "DataWystawienia" if tag == "SprzedazWiersz" else "DataZakupu", invoice.issue_date.isoformat())
    if tag == "SprzedazWiersz":
        _sub(row, "DataSprzedazy", (invoice.sale_date or invoice.issue_date).isoformat())

    totals: dict[str, Decimal] = {}
    vat_total = Decimal("0")
    net_total = Decimal("0")
    for line in invoice.lines:
        net_field, vat_field = fields[line.vat_rate]
        net = q(Decimal(line.net_amount) * rate)
        vat = q(Decimal(line.vat_amount) * rate)
        totals[net_field] = totals.get(net_field, Decimal("0")) + net
        net_total += net
        if vat_field is not None:
            totals[vat_field] = totals.get(vat_field, Decimal("0")) + vat
            vat_total += vat
    for field_name in sorted(totals, key=lambda item: int(item.split("_")[1])):
        _sub(row, field_name, _amount(totals[field_name]))
    return net_total, vat_total


def build_jpk_v7m(
    profile: BusinessProfile,
    year: int,
    month: int,
    sales: list[Invoice],
    purchases: list[Invoice],
) -> GeneratedDeclaration:
    root = ET.Element("JPK", {"xmlns": JPK_V7M_NAMESPACE})
    _header(root, code="JPK_VAT", system_code="JPK_V7M (3)", year=year, month=month)
    _subject(root, profile)

    register = _sub(root, "Ewidencja")
    output_vat = Decimal("0")
    for position, invoice in enumerate(sales, start=1):
        _, vat = _register_row(register, "SprzedazWiersz", "LpSprzedazy", position, invoice, SALES_FIELDS)
        output_vat += vat
    sales_control = _sub(register, "SprzedazCtrl")
    _sub(sales_control, "LiczbaWierszySprzedazy", str(len(sales)))
    _sub(sales_control, "PodatekNalezny", _amount(output_vat))

    input_vat = Decimal("0")
    for position, invoice in enumerate(purchases, start=1):
        _, vat = _register_row(register, "ZakupWiersz", "LpZakupu", position, invoice, PURCHASE_FIELDS)
        input_vat += vat
    purchase_control = _sub(register, "ZakupCtrl")
    _sub(purchase_control, "LiczbaWierszyZakupow", str(len(purchases)))
    _sub(purchase_control, "PodatekNaliczony", _amount(input_vat))

    return GeneratedDeclaration(
        xml_content=_serialize(root),
        file_name=f"JPK_V7M_{profile.nip}_{year:04d}-{month:02d}.xml",
        declaration_type="JPK_V7M",
    )


def build_pit_advance(profile: BusinessProfile, result: PitAdvanceResult) -> GeneratedDeclaration:
    root = ET.Element("Deklaracja", {"xmlns": PIT_ADVANCE_NAMESPACE})
    _header(root, code="PIT-ADVANCE", system_code=f"PIT-{result.tax_type}", year=result.year, month=result.month)
    _subject(root, profile)

    body = _sub(root, "PozycjeSzczegolowe")
    _sub(body, "FormaOpodatkowania", result.tax_type)
    _sub(body, "PrzychodNarastajaco", _amount(result.cumulative_income))
    _sub(body, "KosztyNarastajaco", _amount(result.cumulative_costs))
    _sub(body, "PodatekNarastajaco", _amount(result.cumulative_tax))
    _sub(body, "PodatekPoprzedni", _amount(result.previous_cumulative_tax))
    _sub(body, "ZaliczkaDoZaplaty", _amount(result.advance_due))

    return GeneratedDeclaration(
        xml_content=_serialize(root),
        file_name=f"PIT_ADVANCE_{profile.nip}_{result.year:04d}-{result.month:02d}.xml",
        declaration_type="PIT_ADVANCE",
    )


def build_zus_dra(profile: BusinessProfile, year: int, month: int, contributions: ZusContributions) -> GeneratedDeclaration:
    root = ET.Element("KEDU", {"xmlns": ZUS_DRA_NAMESPACE})
    document = _sub(root, "ZUSDRA")
    _sub(document, "OkresRozliczeniowy", f"{month:02d}-{year:04d}")
    payer = _sub(document, "DanePlatnika")
    _sub(payer, "NIP", profile.nip)
    _sub(payer, "Nazwa", profile.name)
    amounts = _sub(document, "Skladki")
    _sub(amounts, "PodstawaWymiaru", _amount(contributions.base))
    _sub(amounts, "SkladkaEmerytalna", _amount(contributions.social))
    _sub(amounts, "SkladkaZdrowotna", _amount(contributions.health))
    _sub(amounts, "Razem", _amount(contributions.total))

    return GeneratedDeclaration(
        xml_content=_serialize(root),
        file_name=f"ZUS_DRA_{profile.nip}_{year:04d}-{month:02d}.xml",
        declaration_type="ZUS_DRA",
    )

from __future__ import annotations

# (code, name, type, parent_code); parents precede their children.
POLISH_CHART_OF_ACCOUNTS: tuple[tuple[str, str, str, str | None], ...] = (
    ("100", "Kasa", "ASSET", None),
    ("130", "Rachunek bankowy", "ASSET", None),
    ("201", "Rozrachunki z odbiorcami", "ASSET", None),
    ("202", "Rozrachunki z dostawcami", "LIABILITY", None),
    ("221", "VAT należny", "LIABILITY", None),
    ("222", "VAT naliczony", "ASSET", None),
    ("400", "Koszty według rodzajów", "EXPENSE", None),
    ("401", "Zużycie materiałów i energii", "EXPENSE", "400"),
    ("402", "Usługi obce", "EXPENSE", "400"),
    ("700", "Przychody ze sprzedaży", "REVENUE", None),
    ("800", "Kapitał podstawowy", "EQUITY", None),
    ("860", "Wynik finansowy", "EQUITY", None),
)

CASH_ACCOUNT = "100"
BANK_ACCOUNT = "130"
RECEIVABLES_ACCOUNT = "201"
PAYABLES_ACCOUNT = "202"
VAT_OUTPUT_ACCOUNT = "221"
VAT_INPUT_ACCOUNT = "222"
EXPENSES_ACCOUNT = "400"
REVENUE_ACCOUNT = "700"

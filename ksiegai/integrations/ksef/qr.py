from __future__ import annotations

import base64
import io
from dataclasses import dataclass
from datetime import date

import qrcode
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from PIL import Image

from ksiegai.integrations.ksef.validators import normalize_nip, sha256_base64url


QR_DOMAINS = {
    "test": "qr-test.ksef.mf.gov.pl",
    "demo": "qr-demo.ksef.mf.gov.pl",
    "prod": "qr.ksef.mf.gov.pl",
}
CONTEXT_TYPES = ("Nip", "InternalId", "NipVatUe", "PeppolId")
OFFLINE_LABEL = "OFFLINE"
CERTIFICATE_LABEL = "CERTYFIKAT"
QR_WIDTH = 300
QR_MARGIN = 1
PSS_SALT_LENGTH = 32
MIN_KEY_SIZE = 2048


@dataclass(slots=True)
class QrCodeResult:
    url: str
    label: str
    png: bytes

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.png).decode("ascii")


def _base64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def render_png(url: str, *, width: int = QR_WIDTH, margin: int = QR_MARGIN) -> bytes:
    """Render a QR code with error correction M as a square PNG."""

    code = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=margin, box_size=1)
    code.add_data(url)
    code.make(fit=True)
    image = code.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
    image = image.resize((width, width), Image.Resampling.NEAREST)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def sign_rsa_pss(data: str, private_key_pem: str) -> str:
    key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("KSeF certificate links require an RSA private key")
    if key.key_size < MIN_KEY_SIZE:
        raise ValueError(f"RSA key must be at least {MIN_KEY_SIZE} bits")
    signature = key.sign(
        data.encode("utf-8"),
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=PSS_SALT_LENGTH),
        hashes.SHA256(),
    )
    return _base64url(signature)


class KsefQrCodeService:
    """Verification links and QR images printed on KSeF invoices."""

    def __init__(self, environment: str = "test") -> None:
        if environment not in QR_DOMAINS:
            raise ValueError(f"unknown KSeF environment: {environment}")
        self.environment = environment

    @property
    def domain(self) -> str:
        return QR_DOMAINS[self.environment]

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}"

    def invoice_url(self, *, seller_nip: str, issue_date: date, invoice_xml: str) -> str:
        digest = sha256_base64url(invoice_xml)
        return f"{self.base_url}/invoice/{normalize_nip(seller_nip)}/{issue_date.strftime('%d-%m-%Y')}/{digest}"

    def generate_invoice_qr(
        self,
        *,
        seller_nip: str,
        issue_date: date,
        invoice_xml: str,
        ksef_number: str | None = None,
    ) -> QrCodeResult:
        """CODE I: the invoice verification link, labelled with the KSeF number or OFFLINE."""

        url = self.invoice_url(seller_nip=seller_nip, issue_date=issue_date, invoice_xml=invoice_xml)
        return QrCodeResult(url=url, label=ksef_number or OFFLINE_LABEL, png=render_png(url))

    def certificate_url(
        self,
        *,
        context_type: str,
        context_value: str,
        seller_nip: str,
        certificate_serial: str,
        invoice_xml: str,
        private_key_pem: str,
    ) -> str:
        if context_type not in CONTEXT_TYPES:
            raise ValueError(f"unsupported context type: {context_type}")
        digest = sha256_base64url(invoice_xml)
        unsigned = (
            f"{self.domain}/certificate/{context_type}/{context_value}/"
            f"{normalize_nip(seller_nip)}/{certificate_serial}/{digest}"
        )
        return f"https://{unsigned}/{sign_rsa_pss(unsigned, private_key_pem)}"

    def generate_certificate_qr(
        self,
        *,
        context_type: str,
        context_value: str,
        seller_nip: str,
        certificate_serial: str,
        invoice_xml: str,
        private_key_pem: str,
    ) -> QrCodeResult:
        """CODE II: the signed certificate link required on offline invoices."""

        url = self.certificate_url(
            context_type=context_type,
            context_value=context_value,
            seller_nip=seller_nip,
            certificate_serial=certificate_serial,
            invoice_xml=invoice_xml,
            private_key_pem=private_key_pem,
        )
        return QrCodeResult(url=url, label=CERTIFICATE_LABEL, png=render_png(url))

"""Certificate utility functions for reading issued certificates and extracting metadata."""

from pathlib import Path

from cryptography import x509

PEM_CERTIFICATE_MARKER = b"-----BEGIN CERTIFICATE-----"


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    return x509.load_pem_x509_certificate(pem_data)


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def extract_certificate_metadata(cert: x509.Certificate) -> dict[str, str]:
    """Extract reporting metadata from a certificate.

    Returns:
        Dict with commonName, serialNumber, notBefore and expiry (ISO 8601).
        commonName is empty when the subject carries none.
    """
    cn_attributes = cert.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
    cn = cn_attributes[0].value if cn_attributes else ""
    if not isinstance(cn, str):
        raise ValueError("CN must be string")

    return {
        "commonName": cn,
        "serialNumber": get_certificate_serial_hex(cert),
        "notBefore": cert.not_valid_before_utc.isoformat(),
        "expiry": cert.not_valid_after_utc.isoformat(),
    }


def read_certificate_metadata(path: Path) -> dict[str, str]:
    """Load a PEM certificate file and extract its metadata.

    easy-rsa writes a text dump ahead of the PEM block, so parsing starts at
    the first BEGIN marker.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file holds no parseable certificate
    """
    data = path.read_bytes()
    start = data.find(PEM_CERTIFICATE_MARKER)
    if start == -1:
        raise ValueError(f"no PEM certificate in {path}")
    return extract_certificate_metadata(deserialize_certificate(data[start:]))

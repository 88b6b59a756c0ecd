"""
Domain private-key and CSR handling.

Account-key operations (JWK, JWS) live in acme_client/jws.py.  Everything here
works on PEM so the artifacts can be stored as-is in the certificate repository.
"""
from __future__ import annotations

from datetime import datetime, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key for a domain certificate."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def private_key_to_pem(key: PrivateKey) -> bytes:
    """Serialize a private key to an unencrypted PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key(pem: bytes) -> PrivateKey:
    return serialization.load_pem_private_key(pem, password=None)  # type: ignore[return-value]


def create_csr(private_key: PrivateKey, domain: str) -> x509.CertificateSigningRequest:
    """Create a CSR with CN = *domain* and *domain* as the only SAN."""
    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
    )
    return builder.sign(private_key, hashes.SHA256())


def csr_to_pem(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.PEM)


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.DER)


def load_csr(pem: bytes) -> x509.CertificateSigningRequest:
    return x509.load_pem_x509_csr(pem)


def csr_matches(csr: x509.CertificateSigningRequest, private_key: PrivateKey, domain: str) -> bool:
    """True if *csr* was built for *domain* from *private_key* and is still signed correctly."""
    if not csr.is_signature_valid:
        return False
    cns = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not cns or cns[0].value != domain:
        return False
    pub = serialization.PublicFormat.SubjectPublicKeyInfo
    return csr.public_key().public_bytes(serialization.Encoding.PEM, pub) == (
        private_key.public_key().public_bytes(serialization.Encoding.PEM, pub)
    )


def split_pem_chain(full_chain: str) -> tuple[str, str]:
    """
    Split a PEM chain into (leaf_cert_pem, chain_pem).

    The ACME server returns: [leaf] [intermediate1] [intermediate2] ...
    """
    blocks = []
    current: list[str] = []
    for line in full_chain.splitlines(keepends=True):
        current.append(line)
        if "-----END CERTIFICATE-----" in line:
            blocks.append("".join(current))
            current = []

    if not blocks:
        return full_chain, ""
    return blocks[0], "".join(blocks[1:])


def parse_expiry(pem: bytes) -> datetime:
    """Parse the notAfter field from a PEM certificate and return a UTC datetime."""
    cert = x509.load_pem_x509_certificate(pem)
    return cert.not_valid_after_utc


def days_until_expiry(expiry: datetime) -> int:
    """Return integer days until expiry (negative if already expired)."""
    return (expiry - datetime.now(tz=timezone.utc)).days

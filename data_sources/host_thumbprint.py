"""TLS certificate thumbprint of an ESXi host, used to add hosts to vCenter."""

import hashlib
import socket
import ssl

from errors import ProviderError
from schema import Attribute, DataSource, TYPE_BOOL, TYPE_STRING


def thumbprint_schema():
    return {
        "address": Attribute(TYPE_STRING, required=True, description="The address of the ESXi host."),
        "port": Attribute(TYPE_STRING, optional=True, default="443"),
        "insecure": Attribute(TYPE_BOOL, optional=True, default=False,
                              description="Skip certificate verification."),
    }


def format_thumbprint(der_bytes):
    """SHA-1 of a DER certificate as uppercase hex pairs joined with ':'."""
    digest = hashlib.sha1(der_bytes).hexdigest().upper()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))


def fetch_certificate(address, port, insecure=False, timeout=30):
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    if insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    try:
        with socket.create_connection((address, int(port)), timeout=timeout) as sock:
            with context.wrap_socket(sock, server_hostname=address) as tls:
                return tls.getpeercert(binary_form=True)
    except (OSError, ssl.SSLError) as e:
        raise ProviderError(f"could not read certificate from {address}:{port}: {e}") from e


def read(d, client):
    der = fetch_certificate(d.get("address"), d.get("port") or "443", bool(d.get("insecure")))
    d.set_id(format_thumbprint(der))


def data_source():
    return DataSource(thumbprint_schema(), read=read, description="SHA-1 thumbprint of a host certificate.")

"""RFC 3161 timestamping client for gitstamp.

Anchors commit ids to a trusted Time Stamping Authority (TSA). A commit
id is already a cryptographic digest of the commit and everything it
points to, so it is submitted to the TSA as-is; the signed reply proves
the commit existed no later than the certified time.

The work is split the way the lifecycle needs it:

1. :meth:`TimestampAuthority.build_query`: DER TimeStampReq for a digest.
2. :meth:`TimestampAuthority.submit`: HTTP POST to the TSA endpoint.
3. :meth:`TimestampAuthority.parse_reply`: decode the TimeStampResp.
4. :meth:`TimestampAuthority.verify`: check status, message imprint,
   nonce, certificate validity and the CMS signature against the trust
   anchor.

``asn1crypto`` handles the ASN.1 structures; ``rfc3161ng`` performs the
signature check.

Usage::

    from gitstamp.timestamp import TimestampAuthority

    tsa = TimestampAuthority(config)
    query = tsa.build_query(digest)
    reply = tsa.submit(query)
    if tsa.verify(reply, digest, tsa.trust_anchor()):
        print(tsa.parse_reply(reply).signed_time)
"""

from __future__ import annotations

import logging
import secrets
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

import rfc3161ng
from asn1crypto import algos, cms, core, pem, tsp, x509

from .errors import ConfigurationError, SubmissionError
from .models_timestamp import HashAlgorithm, StampConfig, TimestampReply

logger = logging.getLogger("gitstamp.timestamp")

# ---------------------------------------------------------------------------
# Default TSA endpoints
# ---------------------------------------------------------------------------

DEFAULT_TSA_URLS: list[str] = [
    "https://freetsa.org/tsr",
    "http://timestamp.digicert.com",
    "http://timestamp.globalsign.com/tsa/r6advanced1",
]

DEFAULT_TSA_URL = DEFAULT_TSA_URLS[0]

_PKI_STATUS: dict[str, int] = {
    "granted": 0,
    "granted_with_mods": 1,
    "rejection": 2,
    "waiting": 3,
    "revocation_warning": 4,
    "revocation_notification": 5,
}

_STATUS_TEXT: dict[int, str] = {
    0: "Granted.",
    1: "Granted with modifications.",
    2: "Rejected.",
    3: "Waiting.",
    4: "Revocation warning.",
    5: "Revoked.",
}


class TimeStampResponse(core.Sequence):
    """TimeStampResp with an optional token.

    RFC 3161 leaves the token out of every non-granted reply, while
    :class:`asn1crypto.tsp.TimeStampResp` declares it mandatory and so
    cannot load a rejection.
    """

    _fields = [
        ("status", tsp.PKIStatusInfo),
        ("time_stamp_token", cms.ContentInfo, {"optional": True}),
    ]


class TimestampAuthority:
    """Client for one TSA endpoint and its trust anchor.

    Args:
        config: Run configuration (TSA URL, certificate path, timeout...).
    """

    def __init__(self, config: Optional[StampConfig] = None) -> None:
        self.config = config or StampConfig()
        self._anchor: Optional[list[bytes]] = None

    # ------------------------------------------------------------------
    # Request creation
    # ------------------------------------------------------------------

    @staticmethod
    def new_nonce() -> int:
        """Return a random 64-bit nonce."""
        return int.from_bytes(secrets.token_bytes(8), "big")

    def build_query(self, digest: bytes, nonce: Optional[int] = None) -> bytes:
        """Create a DER-encoded RFC 3161 TimeStampReq for a digest.

        Args:
            digest: Raw digest bytes (a commit id). Its length selects the
                hash algorithm named in the message imprint.
            nonce: Optional nonce the TSA must echo back.

        Returns:
            DER-encoded TimeStampReq bytes.

        Raises:
            ValueError: If no supported hash algorithm has the digest's size.
        """
        algorithm = HashAlgorithm.for_digest(digest)
        fields = {
            "version": "v1",
            "message_imprint": tsp.MessageImprint(
                {
                    "hash_algorithm": algos.DigestAlgorithm({"algorithm": algorithm.value}),
                    "hashed_message": digest,
                }
            ),
            "cert_req": self.config.request_cert,
        }
        if nonce is not None:
            fields["nonce"] = nonce
        return tsp.TimeStampReq(fields).dump()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, request: bytes) -> bytes:
        """POST a TimeStampReq to the TSA and return the raw reply.

        Args:
            request: DER-encoded TimeStampReq from :meth:`build_query`.

        Returns:
            DER-encoded TimeStampResp bytes.

        Raises:
            SubmissionError: If the HTTP request fails or returns no body.
        """
        tsa_url = self.config.tsa_url
        try:
            req = urllib.request.Request(
                tsa_url,
                data=request,
                headers={
                    "Content-Type": "application/timestamp-query",
                    "Accept": "application/timestamp-reply",
                },
                method="POST",
            )
            with urllib.request.urlopen(req, timeout=self.config.timeout_seconds) as resp:
                reply = resp.read()
        except (OSError, ValueError) as exc:
            logger.error("TSA HTTP request failed for %s: %s", tsa_url, exc)
            raise SubmissionError(tsa_url, exc) from exc

        if not reply:
            raise SubmissionError(tsa_url, ValueError("empty reply"))
        return reply

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_reply(self, reply: bytes) -> TimestampReply:
        """Decode a DER TimeStampResp.

        Args:
            reply: Raw DER bytes as returned by the TSA.

        Returns:
            The decoded :class:`TimestampReply`.

        Raises:
            ValueError: If the bytes are not a well-formed TimeStampResp.
        """
        try:
            return _decode_reply(reply)
        except ValueError:
            raise
        except Exception as exc:
            raise ValueError(f"Malformed timestamp reply: {exc}") from exc

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def trust_anchor(self) -> list[bytes]:
        """Load the configured TSA certificate(s) as DER, once per client.

        Raises:
            ConfigurationError: If the file is missing or holds no certificate.
        """
        if self._anchor is None:
            self._anchor = load_trust_anchor(self.config.cert_path)
        return self._anchor

    def verify(
        self,
        reply: bytes,
        digest: bytes,
        trust_anchor: Sequence[bytes],
        nonce: Optional[int] = None,
    ) -> bool:
        """Check that a reply is a valid timestamp of ``digest``.

        Checks:
        1. The reply decodes and its status is "granted".
        2. The message imprint matches ``digest`` and its algorithm.
        3. The echoed nonce matches, when one was sent.
        4. The signed time lies inside the validity period of a trust
           anchor certificate whose key verifies the token signature.

        Args:
            reply: Raw DER TimeStampResp.
            digest: The digest that was timestamped.
            trust_anchor: DER certificates, see :meth:`trust_anchor`.
            nonce: Nonce sent with the request, if any.

        Returns:
            True if the reply is a valid timestamp of ``digest``.
        """
        try:
            parsed = self.parse_reply(reply)
        except ValueError as exc:
            logger.warning("Timestamp reply does not decode: %s", exc)
            return False

        if not parsed.is_granted:
            logger.warning("TSA response status is not granted: %d", parsed.status)
            return False

        if parsed.token_der is None:
            logger.warning("No token in reply, cannot verify")
            return False

        algorithm = HashAlgorithm.for_digest(digest)
        if parsed.hash_algorithm != algorithm.value:
            logger.warning(
                "Hash algorithm mismatch: token=%s, expected=%s",
                parsed.hash_algorithm,
                algorithm.value,
            )
            return False

        if (parsed.message_imprint or "").lower() != digest.hex():
            logger.warning(
                "Message imprint mismatch: token=%s, expected=%s",
                (parsed.message_imprint or "")[:16],
                digest.hex()[:16],
            )
            return False

        if nonce is not None and parsed.nonce != nonce:
            logger.warning("Nonce mismatch: sent %d, got %s", nonce, parsed.nonce)
            return False

        for cert_der in trust_anchor:
            if not _covers(cert_der, parsed.signed_time):
                continue
            if _check_signature(parsed.token_der, cert_der, digest, algorithm):
                return True

        logger.warning("No trust anchor certificate verifies the timestamp")
        return False

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    @staticmethod
    def render_text(reply: TimestampReply) -> str:
        """Render a decoded reply as OpenSSL-style text."""
        lines = [
            "Status info:",
            f"Status: {_STATUS_TEXT.get(reply.status, 'Unknown.')}",
            f"Status description: {reply.status_string or 'unspecified'}",
            "",
            "TST info:",
            "Version: " + (str(reply.version) if reply.version is not None else "unspecified"),
            f"Policy OID: {reply.policy_id or 'unspecified'}",
            f"Hash Algorithm: {reply.hash_algorithm or 'unspecified'}",
            "Message data:",
        ]
        lines.extend(_hexdump(bytes.fromhex(reply.message_imprint or "")))
        lines.append(
            "Serial number: "
            + (f"0x{reply.serial_number:X}" if reply.serial_number is not None else "unspecified")
        )
        lines.append(
            "Time stamp: "
            + (reply.signed_time.strftime("%b %d %H:%M:%S %Y GMT") if reply.signed_time else "unspecified")
        )
        lines.append(
            "Accuracy: "
            + (f"{reply.accuracy_seconds:g} seconds" if reply.accuracy_seconds else "unspecified")
        )
        lines.append(f"Ordering: {'yes' if reply.ordering else 'no'}")
        lines.append("Nonce: " + (f"0x{reply.nonce:X}" if reply.nonce is not None else "unspecified"))
        lines.append(f"TSA: {reply.tsa_name or 'unspecified'}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def load_trust_anchor(cert_path: str) -> list[bytes]:
    """Read a PEM bundle or a single DER certificate.

    Args:
        cert_path: Path to the certificate file.

    Returns:
        DER bytes of every certificate in the file.

    Raises:
        ConfigurationError: If the file is missing or holds no certificate.
    """
    path = Path(cert_path).expanduser()
    if not path.exists():
        raise ConfigurationError(f"trust anchor not found: {path}")

    data = path.read_bytes()
    if pem.detect(data):
        ders = [
            der
            for type_name, _headers, der in pem.unarmor(data, multiple=True)
            if type_name == "CERTIFICATE"
        ]
    else:
        ders = [data]

    certs = []
    for der in ders:
        try:
            x509.Certificate.load(der)["tbs_certificate"]["validity"].native
        except Exception as exc:
            raise ConfigurationError(f"unreadable certificate in {path}: {exc}") from exc
        certs.append(der)

    if not certs:
        raise ConfigurationError(f"no certificate in {path}")
    logger.debug("Loaded %d trust anchor certificate(s) from %s", len(certs), path)
    return certs


def _decode_reply(reply: bytes) -> TimestampReply:
    resp = TimeStampResponse.load(reply, strict=True)
    status_info = resp["status"]
    raw_status = status_info["status"].native
    status = raw_status if isinstance(raw_status, int) else _PKI_STATUS.get(raw_status, 2)

    status_string = None
    strings = status_info["status_string"].native
    if strings:
        status_string = "; ".join(str(s) for s in strings)

    result = TimestampReply(status=status, status_string=status_string)

    token = resp["time_stamp_token"]
    if isinstance(token, core.Void) or status not in (0, 1):
        return result

    tst_info = token["content"]["encap_content_info"]["content"].parsed
    if not isinstance(tst_info, tsp.TSTInfo):
        raise ValueError("token does not carry a TSTInfo")

    signed_time = tst_info["gen_time"].native
    if isinstance(signed_time, datetime) and signed_time.tzinfo is None:
        signed_time = signed_time.replace(tzinfo=timezone.utc)

    accuracy = None
    accuracy_node = tst_info["accuracy"]
    if not isinstance(accuracy_node, core.Void):
        secs = float(accuracy_node["seconds"].native or 0)
        millis = float(accuracy_node["millis"].native or 0)
        micros = float(accuracy_node["micros"].native or 0)
        accuracy = secs + millis / 1000.0 + micros / 1_000_000.0

    tsa_name = None
    tsa_node = tst_info["tsa"]
    if not isinstance(tsa_node, core.Void):
        chosen = tsa_node.chosen
        tsa_name = chosen.human_friendly if isinstance(chosen, x509.Name) else str(chosen.native)

    imprint = tst_info["message_imprint"]
    return result.model_copy(
        update={
            "signed_time": signed_time,
            "version": _version_number(tst_info["version"].native),
            "serial_number": tst_info["serial_number"].native,
            "policy_id": tst_info["policy"].dotted,
            "hash_algorithm": imprint["hash_algorithm"]["algorithm"].native,
            "message_imprint": imprint["hashed_message"].native.hex(),
            "nonce": tst_info["nonce"].native,
            "accuracy_seconds": accuracy,
            "ordering": bool(tst_info["ordering"].native),
            "tsa_name": tsa_name,
            "token_der": token.dump(),
        }
    )


def _version_number(value) -> Optional[int]:
    if isinstance(value, str):
        return int(value.lstrip("v"))
    return value


def _covers(cert_der: bytes, signed_time: Optional[datetime]) -> bool:
    """True if the certificate was valid at ``signed_time``."""
    if signed_time is None:
        return False
    validity = x509.Certificate.load(cert_der)["tbs_certificate"]["validity"]
    not_before = validity["not_before"].native
    not_after = validity["not_after"].native
    if not (not_before <= signed_time <= not_after):
        logger.info(
            "Signed time %s outside certificate validity %s .. %s",
            signed_time.isoformat(),
            not_before.isoformat(),
            not_after.isoformat(),
        )
        return False
    return True


def _check_signature(
    token_der: bytes,
    cert_der: bytes,
    digest: bytes,
    algorithm: HashAlgorithm,
) -> bool:
    """Full cryptographic verification using rfc3161ng."""
    try:
        rfc3161ng.check_timestamp(
            token_der,
            certificate=cert_der,
            digest=digest,
            hashname=algorithm.value,
        )
        return True
    except Exception as exc:
        logger.info("rfc3161ng timestamp verification failed: %s", exc)
        return False


def _hexdump(data: bytes) -> list[str]:
    rows = []
    for offset in range(0, len(data), 16):
        chunk = data[offset : offset + 16]
        rows.append(f"    {offset:04x} - " + " ".join(f"{b:02x}" for b in chunk))
    return rows

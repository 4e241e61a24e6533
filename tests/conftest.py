"""Shared fixtures for gitstamp tests."""

import hashlib
import shutil
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import pytest
from asn1crypto import cms, tsp
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from gitstamp.errors import AlreadyExists, ResolutionError
from gitstamp.models import Revision
from gitstamp.models_timestamp import StampConfig, TimestampReply
from gitstamp.timestamp import TimeStampResponse


SIGNED_TIME = datetime(2026, 2, 27, 12, 0, 0, tzinfo=timezone.utc)
COMMIT_A = "a" * 40
COMMIT_B = "b" * 40
COMMIT_C = "c" * 40


# ---------------------------------------------------------------------------
# TSA replies
# ---------------------------------------------------------------------------


def make_identity(
    not_before: datetime = datetime(2020, 1, 1, tzinfo=timezone.utc),
    not_after: datetime = datetime(2040, 1, 1, tzinfo=timezone.utc),
) -> SimpleNamespace:
    """A self-signed TSA certificate and its RSA key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "gitstamp test TSA")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.TIME_STAMPING]),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )
    return SimpleNamespace(
        key=key,
        cert_der=cert.public_bytes(serialization.Encoding.DER),
        cert_pem=cert.public_bytes(serialization.Encoding.PEM),
    )


@pytest.fixture(scope="session")
def tsa_identity() -> SimpleNamespace:
    return make_identity()


def make_reply(
    digest: bytes,
    identity=None,
    *,
    signed_time: datetime = SIGNED_TIME,
    nonce: Optional[int] = None,
    serial: int = 4242,
    status: str = "granted",
) -> bytes:
    """Build a DER TimeStampResp for ``digest``.

    Signed with ``identity`` when given; otherwise the token carries no
    signer, which is enough for parsing tests.
    """
    if status not in ("granted", "granted_with_mods"):
        return TimeStampResponse(
            {"status": {"status": status, "status_string": ["request rejected"]}}
        ).dump()

    algorithm = {20: "sha1", 32: "sha256"}[len(digest)]
    info = {
        "version": "v1",
        "policy": "1.2.3.4.1",
        "message_imprint": {
            "hash_algorithm": {"algorithm": algorithm},
            "hashed_message": digest,
        },
        "serial_number": serial,
        "gen_time": signed_time,
    }
    if nonce is not None:
        info["nonce"] = nonce
    tst_info = tsp.TSTInfo(info)

    signed_data = {
        "version": "v3",
        "digest_algorithms": [{"algorithm": "sha256"}],
        "encap_content_info": {"content_type": "tst_info", "content": tst_info},
        "signer_infos": [],
    }

    if identity is not None:
        cert = asn1_x509.Certificate.load(identity.cert_der)
        signed_attrs = cms.CMSAttributes(
            [
                cms.CMSAttribute({"type": "content_type", "values": ["tst_info"]}),
                cms.CMSAttribute(
                    {
                        "type": "message_digest",
                        "values": [hashlib.sha256(tst_info.dump()).digest()],
                    }
                ),
            ]
        )
        to_sign = signed_attrs.dump()
        signature = identity.key.sign(to_sign, padding.PKCS1v15(), hashes.SHA256())
        signed_data["signer_infos"] = [
            cms.SignerInfo(
                {
                    "version": "v1",
                    "sid": cms.SignerIdentifier(
                        {
                            "issuer_and_serial_number": cms.IssuerAndSerialNumber(
                                {"issuer": cert.issuer, "serial_number": cert.serial_number}
                            )
                        }
                    ),
                    "digest_algorithm": {"algorithm": "sha256"},
                    "signed_attrs": signed_attrs,
                    "signature_algorithm": {"algorithm": "rsassa_pkcs1v15"},
                    "signature": signature,
                }
            )
        ]
        signed_data["certificates"] = [cert]

    token = cms.ContentInfo(
        {"content_type": "signed_data", "content": cms.SignedData(signed_data)}
    )
    return tsp.TimeStampResp(
        {"status": {"status": status}, "time_stamp_token": token}
    ).dump()


# ---------------------------------------------------------------------------
# In-memory collaborators for the lifecycle tests
# ---------------------------------------------------------------------------


class FakeRepo:
    """Resolves a fixed set of specs."""

    def __init__(self, commits: dict[str, str]) -> None:
        self.commits = commits

    def resolve(self, spec: str) -> str:
        try:
            return self.commits[spec]
        except KeyError:
            raise ResolutionError(spec) from None

    def revision(self, commit_id: str) -> Revision:
        return Revision(
            id=commit_id,
            short_id=commit_id[:7],
            subject=f"Commit {commit_id[:4]}",
            commit_time=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )


class MemoryStore:
    """Dict-backed notes store.

    ``mangle`` rewrites every blob on write, simulating a store that
    corrupts data.
    """

    def __init__(self, mangle=None) -> None:
        self.notes: dict[str, str] = {}
        self.mangle = mangle
        self.puts = 0

    def get(self, revision_id: str) -> Optional[str]:
        return self.notes.get(revision_id)

    def put(self, revision_id: str, blob: str) -> None:
        if revision_id in self.notes:
            raise AlreadyExists(revision_id)
        self.puts += 1
        self.notes[revision_id] = self.mangle(blob) if self.mangle else blob

    def delete(self, revision_id: str) -> bool:
        return self.notes.pop(revision_id, None) is not None


class FakeTsa:
    """TSA stand-in with a trivially checkable reply format.

    A reply is ``b"TSR|<digest hex>|<iso time>"``; it verifies when the
    digest matches. Each submission certifies a later time.
    """

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.submissions: list[bytes] = []
        self.submit_error: Optional[Exception] = None

    def trust_anchor(self) -> list[bytes]:
        return [b"anchor"]

    @staticmethod
    def new_nonce() -> int:
        return 7

    def build_query(self, digest: bytes, nonce: Optional[int] = None) -> bytes:
        return digest

    def submit(self, request: bytes) -> bytes:
        if self.submit_error is not None:
            raise self.submit_error
        self.submissions.append(request)
        signed = SIGNED_TIME + timedelta(minutes=len(self.submissions))
        digest_hex = request.hex() if self.accept else "00" * len(request)
        return f"TSR|{digest_hex}|{signed.isoformat()}".encode()

    def parse_reply(self, reply: bytes) -> TimestampReply:
        try:
            tag, digest_hex, signed = reply.decode().split("|")
            if tag != "TSR":
                raise ValueError(tag)
            return TimestampReply(
                status=0,
                message_imprint=digest_hex,
                signed_time=datetime.fromisoformat(signed),
            )
        except (UnicodeDecodeError, ValueError) as exc:
            raise ValueError(f"bad reply: {exc}") from exc

    def verify(self, reply, digest, trust_anchor, nonce=None) -> bool:
        try:
            return self.parse_reply(reply).message_imprint == digest.hex()
        except ValueError:
            return False

    @staticmethod
    def render_text(reply: TimestampReply) -> str:
        return f"Time stamp: {reply.signed_time.isoformat()}"


@pytest.fixture
def config() -> StampConfig:
    return StampConfig(delay_seconds=5, cert_path="/nonexistent/tsa.crt")


@pytest.fixture
def fake_repo() -> FakeRepo:
    return FakeRepo({"A": COMMIT_A, "B": COMMIT_B, "C": COMMIT_C, "HEAD": COMMIT_A})


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def fake_tsa() -> FakeTsa:
    return FakeTsa()


# ---------------------------------------------------------------------------
# Real git repositories
# ---------------------------------------------------------------------------


def _git(path: Path, *args: str) -> str:
    return subprocess.run(
        ["git", "-C", str(path), *args],
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> SimpleNamespace:
    """A throwaway repository with two commits."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    path = tmp_path / "repo"
    path.mkdir()
    _git(path, "init", "-q")
    _git(path, "config", "user.name", "Test User")
    _git(path, "config", "user.email", "test@example.com")
    _git(path, "config", "commit.gpgsign", "false")

    (path / "README").write_text("first\n")
    _git(path, "add", "README")
    _git(path, "commit", "-q", "-m", "Initial commit")
    first = _git(path, "rev-parse", "HEAD")

    (path / "README").write_text("second\n")
    _git(path, "commit", "-q", "-am", "Second [commit]")
    second = _git(path, "rev-parse", "HEAD")

    return SimpleNamespace(path=path, first=first, second=second, git=_git)

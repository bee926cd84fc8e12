import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest
from eth_account import Account


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import codec`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from codec.keys import did_for_address  # noqa: E402
from codec.vc_schema import credential_domain  # noqa: E402
from issuer.issue import CredentialIssuer, ProofOfFundsData  # noqa: E402
from issuer.statuslist import InMemoryRevocationRegistry  # noqa: E402
from providers.base import ProviderPolicy  # noqa: E402
from providers.ledger import ComplianceFlags, InMemoryLedgerRegistry, TokenRecord  # noqa: E402
from providers.storage import InMemoryCredentialRepository  # noqa: E402
from verifier.credential import CredentialVerifier  # noqa: E402
from verifier.token import TokenVerifier  # noqa: E402

REGISTRY = "0x1111111111111111111111111111111111111111"
STATUS_BASE = "https://status.test/revocations"


class Clock:
    """Settable clock handed to every component under test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def fast_policy():
    return ProviderPolicy(timeout=0.2, retries=2, backoff=0.01)


@pytest.fixture
def domain():
    return credential_domain(1, REGISTRY)


@pytest.fixture
def issuer_account():
    return Account.create()


@pytest.fixture
def holder_account():
    return Account.create()


@pytest.fixture
def holder_did(holder_account):
    return did_for_address(holder_account.address)


@pytest.fixture
def issuer(issuer_account, domain, clock):
    return CredentialIssuer(
        issuer_did=did_for_address(issuer_account.address),
        signing_key=issuer_account.key.hex(),
        domain=domain,
        status_base=STATUS_BASE,
        clock=clock,
    )


@pytest.fixture
def token(holder_account, clock):
    return TokenRecord(
        id="42",
        asset_type="USDC",
        amount="50000.00",
        holder_address=holder_account.address,
        expiry=int((clock.now + timedelta(days=30)).timestamp()),
        compliance=ComplianceFlags(kyc=True, sanctions=True),
        custodian="Coinbase Custody",
        audit_hash="0xaudit",
    )


@pytest.fixture
def pof_credential(issuer, token, holder_did):
    return issuer.issue_proof_of_funds(holder_did, ProofOfFundsData.from_token(token))


@pytest.fixture
def revocations():
    return InMemoryRevocationRegistry()


@pytest.fixture
def repository():
    return InMemoryCredentialRepository()


@pytest.fixture
def ledger(token):
    return InMemoryLedgerRegistry([token])


@pytest.fixture
def credential_verifier(domain, revocations, repository, clock):
    return CredentialVerifier(domain, revocations, repository=repository, clock=clock)


@pytest.fixture
def token_verifier(ledger, clock):
    return TokenVerifier(ledger, clock=clock)

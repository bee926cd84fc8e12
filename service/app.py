"""
SiloBridge HTTP service.

    python -m service.app

Views are async (flask[async]); each request runs its own event loop, so
every shared backing synchronizes with threading primitives rather than
asyncio ones.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import wraps
from typing import Any, Callable, Dict, Optional

import requests
import structlog
from Crypto.PublicKey import ECC
from flask import Blueprint, Flask, abort, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from codec.keys import did_for_address, ensure_service_sk, ensure_signing_key, load_signing_account, new_service_sk
from codec.timestamps import to_iso, to_millis, utc_now
from codec.typed_data import SigningDomain
from codec.vc_schema import credential_domain, presentation_domain
from consent.assertions import AssertionEngine, ConsentRequired, UnknownAssertion
from consent.store import ConsentConflict, ConsentStore
from issuer.issue import CredentialIssuer, DeviceData, KycData, ProofOfFundsData, SigningError
from issuer.statuslist import FileRevocationRegistry, InMemoryRevocationRegistry, RevocationRegistry, build_statuslist
from providers.base import NotFound, ProviderPolicy, ProviderTimeout, ProviderUnavailable
from providers.kyc import HttpKycProvider, InMemoryKycProvider, KycProvider
from providers.ledger import HttpLedgerRegistry, InMemoryLedgerRegistry, LedgerRegistry
from providers.sanctions import HttpSanctionsScreening, InMemorySanctionsScreening, SanctionsScreening
from providers.storage import CredentialRepository, FileCredentialRepository, InMemoryCredentialRepository
from service.config import ServiceConfig
from service.logging import setup_logging
from verifier.credential import CredentialVerifier
from verifier.dual import DualRailValidator
from verifier.results import RequirementSpec
from verifier.token import TokenVerifier
from wallet.presentation import verify_presentation

logger = structlog.get_logger(__name__)

EXTENSION_KEY = "silobridge"


@dataclass
class Services:
    config: ServiceConfig
    issuer: CredentialIssuer
    repository: CredentialRepository
    revocations: RevocationRegistry
    ledger: LedgerRegistry
    kyc: KycProvider
    sanctions: SanctionsScreening
    credential_verifier: CredentialVerifier
    token_verifier: TokenVerifier
    dual: DualRailValidator
    consents: ConsentStore
    assertions: AssertionEngine
    service_sk: ECC.EccKey
    presentation_domain: SigningDomain


def build_services(config: ServiceConfig) -> Services:
    policy = ProviderPolicy(config.provider_timeout, config.provider_retries, config.provider_backoff)
    session = requests.Session()

    signing_key = config.resolve_signing_key()
    issuer_did = config.issuer_did
    if not issuer_did and signing_key:
        try:
            issuer_did = did_for_address(load_signing_account(signing_key).address)
        except ValueError:
            # left unset; issuance reports the bad key as a SigningError
            issuer_did = ""

    domain = credential_domain(config.chain_id, config.registry_contract)
    issuer = CredentialIssuer(
        issuer_did=issuer_did or "",
        signing_key=signing_key,
        domain=domain,
        status_base=config.status_base,
        service_name=config.issuer_name,
    )

    if config.storage_dir is not None:
        repository: CredentialRepository = FileCredentialRepository(config.storage_dir, policy)
    else:
        repository = InMemoryCredentialRepository(policy)

    if config.revocation_file is not None:
        revocations: RevocationRegistry = FileRevocationRegistry(config.revocation_file, policy)
    else:
        revocations = InMemoryRevocationRegistry(policy)

    if config.ledger_url:
        ledger: LedgerRegistry = HttpLedgerRegistry(config.ledger_url, policy, session)
    elif config.ledger_seed is not None:
        ledger = InMemoryLedgerRegistry.from_seed_file(config.ledger_seed, policy)
    else:
        ledger = InMemoryLedgerRegistry(policy=policy)

    kyc: KycProvider = HttpKycProvider(config.kyc_url, policy, session) if config.kyc_url else InMemoryKycProvider(policy=policy)
    if config.sanctions_url:
        sanctions: SanctionsScreening = HttpSanctionsScreening(config.sanctions_url, policy, session)
    else:
        sanctions = InMemorySanctionsScreening(policy=policy)

    if config.service_sk_path is not None and config.service_pk_path is not None:
        service_sk = ensure_service_sk(config.service_sk_path, config.service_pk_path)
    else:
        service_sk = new_service_sk()

    credential_verifier = CredentialVerifier(
        domain,
        revocations,
        repository=repository,
        trusted_issuers=config.trusted_issuers or None,
    )
    token_verifier = TokenVerifier(ledger)
    consents = ConsentStore()
    return Services(
        config=config,
        issuer=issuer,
        repository=repository,
        revocations=revocations,
        ledger=ledger,
        kyc=kyc,
        sanctions=sanctions,
        credential_verifier=credential_verifier,
        token_verifier=token_verifier,
        dual=DualRailValidator(credential_verifier, token_verifier),
        consents=consents,
        assertions=AssertionEngine(
            consents,
            repository,
            credential_verifier,
            token_verifier=token_verifier,
            ledger=ledger,
            kyc_provider=kyc,
            service_sk=service_sk,
        ),
        service_sk=service_sk,
        presentation_domain=presentation_domain(domain),
    )


api = Blueprint("api", __name__)


def _services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


def require_api_key(view: Callable[..., Any]) -> Callable[..., Any]:
    """X-API-Key -> g.partner_id. 401 when absent, 403 when unknown."""

    @wraps(view)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        key = request.headers.get("X-API-Key")
        if not key:
            return jsonify({"error": "API key required"}), 401
        partner = _services().config.api_keys.get(key)
        if partner is None:
            return jsonify({"error": "Invalid API key"}), 403
        g.partner_id = partner
        return await view(*args, **kwargs)

    return wrapper


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object")
    return data


def _required_str(data: Dict[str, Any], name: str) -> str:
    value = data.get(name)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value:
        abort(400, description=f"Invalid or missing {name}")
    return value


def _required_obj(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    if not isinstance(value, dict) or not value:
        abort(400, description=f"Invalid or missing {name}")
    return value


def _requirements(data: Dict[str, Any]) -> RequirementSpec:
    try:
        return RequirementSpec.from_params(data.get("requiredAsset"), data.get("minAmount"))
    except ValueError as exc:
        abort(400, description=f"Invalid minAmount: {exc}")


def _holder_did(data: Dict[str, Any]) -> str:
    holder = _required_str(data, "holderDID")
    if not holder.startswith("did:"):
        abort(400, description="holderDID must be a DID")
    return holder


async def _issued(vc: Dict[str, Any]) -> Any:
    uri = await _services().repository.store(vc)
    return jsonify({"vc": vc, "vcURI": uri, "issuedAt": to_iso(utc_now())})


@api.get("/health")
async def health():
    return jsonify({"status": "healthy", "timestamp": to_millis(utc_now()), "issuer": _services().issuer.issuer_did})


@api.get("/statuslist")
async def statuslist():
    s = _services()
    revoked = await s.revocations.revoked_ids()
    return jsonify(build_statuslist(revoked, s.issuer.issuer_did, s.service_sk))


@api.post("/verify")
async def verify():
    data = _json_body()
    requirements = _requirements(data)
    s = _services()
    if data.get("vcURI"):
        result = await s.credential_verifier.verify_uri(_required_str(data, "vcURI"), requirements)
    elif data.get("tokenId"):
        result = await s.token_verifier.verify_id(_required_str(data, "tokenId"), requirements)
    else:
        return jsonify({"valid": False, "reason": "Either vcURI or tokenId must be provided"}), 400
    return jsonify(result.to_dict())


@api.post("/verify/dual")
async def verify_dual():
    data = _json_body()
    if not data.get("vcURI") or not data.get("tokenId"):
        return jsonify({"valid": False, "reason": "Both vcURI and tokenId are required for dual verification"}), 400
    result = await _services().dual.verify_dual_refs(
        _required_str(data, "vcURI"), _required_str(data, "tokenId"), _requirements(data)
    )
    return jsonify(result.to_dict())


@api.post("/verify/presentation")
async def verify_vp():
    """Holder signature and challenge first, then every embedded credential."""
    data = _json_body()
    vp = _required_obj(data, "presentation")
    requirements = _requirements(data)
    s = _services()
    ok, reason = verify_presentation(vp, s.presentation_domain, data.get("challenge"))
    if not ok:
        return jsonify({"valid": False, "reason": reason, "holder": vp.get("holder"), "credentials": []})
    results = [await s.credential_verifier.verify(vc, requirements) for vc in vp.get("verifiableCredential") or []]
    failed = next((r for r in results if not r.valid), None)
    return jsonify(
        {
            "valid": failed is None,
            "reason": failed.reason if failed else None,
            "holder": vp.get("holder"),
            "credentials": [r.to_dict() for r in results],
        }
    )


@api.post("/vc/pof")
@require_api_key
async def issue_pof():
    data = _json_body()
    holder = _holder_did(data)
    token_id = _required_str(data, "tokenId")
    s = _services()
    token = await s.ledger.get_token(token_id)
    screening = await s.sanctions.screen(token.holder_address)
    vc = s.issuer.issue_proof_of_funds(holder, ProofOfFundsData.from_token(token, screening.cleared))
    return await _issued(vc)


@api.post("/vc/kyc")
@require_api_key
async def issue_kyc():
    data = _json_body()
    holder = _holder_did(data)
    try:
        kyc = KycData.from_dict(_required_obj(data, "kycData"))
    except (KeyError, TypeError, ValueError) as exc:
        abort(400, description=f"Invalid kycData: {exc}")
    return await _issued(_services().issuer.issue_kyc(holder, kyc))


@api.post("/vc/device")
@require_api_key
async def issue_device():
    data = _json_body()
    holder = _holder_did(data)
    try:
        device = DeviceData.from_dict(_required_obj(data, "deviceData"))
    except (KeyError, TypeError, ValueError) as exc:
        abort(400, description=f"Invalid deviceData: {exc}")
    return await _issued(_services().issuer.issue_device_attestation(holder, device))


@api.post("/vc/revoke")
@require_api_key
async def revoke():
    """Body: {statusId} or {vcURI}; the latter resolves the credential's status id."""
    data = _json_body()
    s = _services()
    status_id = data.get("statusId")
    if not status_id:
        vc = await s.repository.retrieve(_required_str(data, "vcURI"))
        status_id = (vc.get("credentialStatus") or {}).get("id")
        if not status_id:
            abort(400, description="Credential has no credentialStatus to revoke")
    newly = await s.revocations.revoke(str(status_id))
    return jsonify({"revoked": status_id, "newlyRevoked": newly})


@api.get("/assertions/<name>/<user_id>")
@require_api_key
async def assertion(name: str, user_id: str):
    try:
        result = await _services().assertions.evaluate(name, user_id, g.partner_id, request.args.to_dict())
    except ValueError as exc:
        abort(400, description=str(exc))
    return jsonify(result.to_dict())


@api.post("/consent/grant")
async def consent_grant():
    data = _json_body()
    user_id = _required_str(data, "userId")
    granted_to = _required_str(data, "grantedTo")
    scopes = data.get("scopes")
    if not isinstance(scopes, list) or not scopes or not all(isinstance(x, str) and x for x in scopes):
        abort(400, description="scopes must be a non-empty list of strings")
    ttl = None
    if data.get("expiresIn") is not None:
        expires_in = data["expiresIn"]
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in <= 0:
            abort(400, description="expiresIn must be a positive number of milliseconds")
        ttl = timedelta(milliseconds=expires_in)
    grant = await _services().consents.grant(user_id, granted_to, scopes, ttl)
    return jsonify({"success": True, "consentId": grant.consent_id, "expiresAt": to_millis(grant.expires_at)})


@api.post("/consent/revoke")
async def consent_revoke():
    data = _json_body()
    user_id = _required_str(data, "userId")
    revoke_from = _required_str(data, "revokeFrom")
    scopes = data.get("scopes")
    if scopes is not None and not isinstance(scopes, list):
        abort(400, description="scopes must be a list")
    await _services().consents.revoke(user_id, revoke_from, scopes)
    return jsonify({"success": True, "revokedAt": to_millis(utc_now())})


@api.get("/registry/token/<token_id>")
async def registry_token(token_id: str):
    token = await _services().ledger.get_token(token_id)
    return jsonify(token.to_dict())


@api.get("/registry/vc")
async def registry_vc():
    uri = request.args.get("uri")
    if not uri:
        abort(400, description="uri query parameter required")
    return jsonify(await _services().repository.retrieve(uri))


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def http_error(exc: HTTPException):
        return jsonify({"error": exc.description}), exc.code

    @app.errorhandler(ConsentRequired)
    def consent_required(exc: ConsentRequired):
        return jsonify({"error": "Consent required", "consentUrl": exc.consent_url, "remediation": exc.remediation}), 403

    @app.errorhandler(UnknownAssertion)
    def unknown_assertion(exc: UnknownAssertion):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(NotFound)
    def not_found(exc: NotFound):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ConsentConflict)
    def consent_conflict(exc: ConsentConflict):
        return jsonify({"error": str(exc)}), 409

    @app.errorhandler(SigningError)
    def signing_error(exc: SigningError):
        logger.error("signing_failed", error=str(exc))
        return jsonify({"error": "Credential signing failed"}), 500

    @app.errorhandler(ProviderUnavailable)
    def provider_unavailable(exc: ProviderUnavailable):
        logger.warning("provider_unavailable", provider=exc.provider, error=str(exc))
        return jsonify({"error": str(exc)}), 503

    @app.errorhandler(ProviderTimeout)
    def provider_timeout(exc: ProviderTimeout):
        logger.warning("provider_timeout", provider=exc.provider, error=str(exc))
        return jsonify({"error": str(exc)}), 504


def create_app(services: Optional[Services] = None, config: Optional[ServiceConfig] = None) -> Flask:
    if services is None:
        services = build_services(config or ServiceConfig())
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = services
    app.register_blueprint(api, url_prefix="/api")
    register_error_handlers(app)
    return app


if __name__ == "__main__":
    config = ServiceConfig()
    setup_logging(config.log_level, config.log_format)
    if config.resolve_signing_key() is None and config.issuer_key_path is not None:
        # dev bootstrap: a fresh issuer key on first run
        ensure_signing_key(config.issuer_key_path)
        logger.info("issuer_key_generated", path=str(config.issuer_key_path))
    app = create_app(config=config)
    logger.info("service_starting", host=config.host, port=config.port, issuer=app.extensions[EXTENSION_KEY].issuer.issuer_did)
    app.run(host=config.host, port=config.port)

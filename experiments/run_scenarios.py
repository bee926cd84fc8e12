"""
Walk SCENARIOS against a SiloBridge service and write a timing CSV.

    python -m experiments.run_scenarios                       # in-process app, seeded ledger
    python -m experiments.run_scenarios --base_url http://127.0.0.1:5001
"""
import argparse
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests
import structlog
from eth_account import Account

from experiments.metrics import size_bytes, stats, timed, write_csv
from experiments.scenarios import SCENARIOS

logger = structlog.get_logger(__name__)

ROOT = Path(__file__).resolve().parents[1]
SEED_PATH = ROOT / "experiments" / "ledger_seed.json"

API_KEY = "demo-key-123"
TOKEN_ID = "42"
HOLDER_DID = "did:ethr:0x742d35Cc6634C0532925a3b8D93C7E8F476C4578"
BALANCE_QUERY = {"minAmount": "10000", "asset": "USDC"}

Response = Tuple[int, Dict[str, Any]]


class HttpClient:
    """Live service over requests."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout_s: float = 15) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def get(self, path: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Response:
        r = self.session.get(self.base_url + path, params=params, headers=headers, timeout=self.timeout_s)
        return r.status_code, r.json()

    def post(self, path: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Response:
        r = self.session.post(self.base_url + path, json=body, headers=headers, timeout=self.timeout_s)
        return r.status_code, r.json()


class FlaskClient:
    """Same interface over a Flask app's test client, no network."""

    def __init__(self, app) -> None:
        self._client = app.test_client()

    def get(self, path: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Response:
        r = self._client.get(path, query_string=params, headers=headers)
        return r.status_code, r.get_json()

    def post(self, path: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Response:
        r = self._client.post(path, json=body, headers=headers)
        return r.status_code, r.get_json()


def _run_one(client, scenario: Dict[str, Any], vc_uri: str, token_id: str, holder_did: str, partner_id: str, auth) -> Tuple[int, Dict[str, Any], Any]:
    rail = scenario["rail"]
    req = scenario.get("requirements") or {}

    if rail == "vc":
        status, body = client.post("/api/verify", {"vcURI": vc_uri, **req})
        return status, body, body.get("valid")
    if rail == "token":
        status, body = client.post("/api/verify", {"tokenId": token_id, **req})
        return status, body, body.get("valid")
    if rail == "dual":
        status, body = client.post("/api/verify/dual", {"vcURI": vc_uri, "tokenId": token_id, **req})
        return status, body, body.get("valid")
    if rail == "assertion":
        if scenario.get("grant"):
            client.post("/api/consent/grant", {"userId": holder_did, "grantedTo": partner_id, "scopes": ["balance_verification"]})
        else:
            client.post("/api/consent/revoke", {"userId": holder_did, "revokeFrom": partner_id})
        status, body = client.get(f"/api/assertions/hasBalance/{holder_did}", params=BALANCE_QUERY, headers=auth)
        if status == 403:
            return status, body, "ConsentRequired"
        return status, body, body.get("result")
    raise ValueError(f"unknown rail {rail!r}")


def run_scenarios(
    client,
    token_id: str = TOKEN_ID,
    holder_did: str = HOLDER_DID,
    api_key: str = API_KEY,
    partner_id: Optional[str] = None,
    scenarios: Optional[Dict[str, Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    """
    Issue one PoF credential for token_id, then run every scenario against
    it. Returns one CSV-ready row per scenario; row["passed"] says whether
    the outcome matched the scenario's expectation.
    """
    auth = {"X-API-Key": api_key}
    partner_id = partner_id or api_key
    scenarios = SCENARIOS if scenarios is None else scenarios

    status, health = client.get("/api/health")
    if status != 200:
        raise RuntimeError(f"Service health not ok: {status} {health}")

    (status, issued), issue_ms = timed(
        lambda: client.post("/api/vc/pof", {"holderDID": holder_did, "tokenId": token_id}, auth)
    )
    if status != 200:
        raise RuntimeError(f"PoF issuance failed: {status} {issued}")
    vc_uri = issued["vcURI"]
    logger.info("scenario_credential_issued", vc_uri=vc_uri, issue_ms=round(issue_ms, 2), vc_bytes=size_bytes(issued["vc"]))

    rows = []
    for name, scenario in scenarios.items():
        notes = ""
        if scenario.get("revoke"):
            _, revoke_resp = client.post("/api/vc/revoke", {"vcURI": vc_uri}, auth)
            notes = f"revoked={revoke_resp.get('revoked')}"

        (status, body, outcome), ms = timed(
            lambda: _run_one(client, scenario, vc_uri, token_id, holder_did, partner_id, auth)
        )
        passed = outcome == scenario["expect"]
        rows.append({
            "scenario": name,
            "rail": scenario["rail"],
            "expected": scenario["expect"],
            "outcome": outcome,
            "passed": passed,
            "status": status,
            "reason": body.get("reason") or body.get("error") or "",
            "code": body.get("code", ""),
            "ms": round(ms, 2),
            "response_bytes": size_bytes(body),
            "notes": notes,
        })
        logger.info("scenario_finished", scenario=name, outcome=outcome, passed=passed, ms=round(ms, 2))
    return rows


def in_process_client(api_key: str = API_KEY) -> FlaskClient:
    from service.app import create_app
    from service.config import ServiceConfig

    config = ServiceConfig(
        signing_key=Account.create().key.hex(),
        issuer_key_path=None,
        ledger_seed=SEED_PATH,
        service_sk_path=None,
        service_pk_path=None,
        api_keys={api_key: api_key},
    )
    return FlaskClient(create_app(config=config))


def main():
    from service.logging import setup_logging

    p = argparse.ArgumentParser()
    p.add_argument("--base_url", default=None, help="live service; omit to run an in-process app")
    p.add_argument("--api_key", default=API_KEY)
    p.add_argument("--partner_id", default=None)
    p.add_argument("--token_id", default=TOKEN_ID)
    p.add_argument("--holder", default=HOLDER_DID)
    p.add_argument("--out", default=str(ROOT / "experiments" / "results" / "scenarios.csv"))
    args = p.parse_args()

    setup_logging("INFO")
    client = HttpClient(args.base_url) if args.base_url else in_process_client(args.api_key)
    rows = run_scenarios(client, args.token_id, args.holder, args.api_key, args.partner_id)
    out_path = write_csv(rows, args.out)
    print(f"\nWrote {out_path}\n")

    print("verify ms: avg=%.2f p50=%.2f p95=%.2f min=%.2f max=%.2f" % stats(r["ms"] for r in rows))
    for r in rows:
        if not r["passed"]:
            print(f"WARNING: {r['scenario']} expected {r['expected']} got {r['outcome']} ({r['reason']})")


if __name__ == "__main__":
    main()

# Run in order: "revoked" revokes the shared credential, so it stays last.
SCENARIOS = {
    "valid": {"rail": "vc", "requirements": {"requiredAsset": "USDC", "minAmount": 10000}, "expect": True},
    "shortfall": {"rail": "vc", "requirements": {"minAmount": 60000}, "expect": False},
    "asset_mismatch": {"rail": "vc", "requirements": {"requiredAsset": "USDT"}, "expect": False},
    "token": {"rail": "token", "requirements": {"requiredAsset": "USDC", "minAmount": 10000}, "expect": True},
    "dual": {"rail": "dual", "requirements": {"minAmount": 10000}, "expect": True},
    "consent_missing": {"rail": "assertion", "grant": False, "expect": "ConsentRequired"},
    "consent_granted": {"rail": "assertion", "grant": True, "expect": True},
    "revoked": {"rail": "vc", "revoke": True, "requirements": {}, "expect": False},
}

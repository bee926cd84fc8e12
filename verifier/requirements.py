from __future__ import annotations

from typing import Any, Optional, Tuple

from verifier.results import RequirementSpec, parse_amount


def check_requirements(asset: Optional[str], amount: Any, req: RequirementSpec) -> Tuple[bool, Optional[str]]:
    """
    Shared by both rails. Asset: exact string equality. Amount: Decimal >=.
    Returns (ok, reason-for-first-failure).
    """
    if req.required_asset is not None and asset != req.required_asset:
        return False, f"Asset mismatch: required {req.required_asset}, found {asset}"

    if req.min_amount is not None:
        if amount is None:
            return False, f"Insufficient amount: required {req.min_amount}, found none"
        try:
            held = parse_amount(amount)
        except ValueError:
            return False, f"Insufficient amount: required {req.min_amount}, found unparseable {amount!r}"
        if held < req.min_amount:
            return False, f"Insufficient amount: required {req.min_amount}, found {amount}"

    return True, None


def amounts_equal(a: Any, b: Any) -> bool:
    """Decimal equality; missing or unparseable on either side never matches."""
    if a is None or b is None:
        return False
    try:
        return parse_amount(a) == parse_amount(b)
    except ValueError:
        return False

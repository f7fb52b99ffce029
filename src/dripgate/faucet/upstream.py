"""Client for the upstream partner faucet API.

Claim submission never raises: every outcome becomes a
``ClaimSubmissionResult``. The remaining partner operations (eligibility,
transaction status, claim codes, distributor and rule administration) raise
``PartnerApiError`` on transport failures and non-2xx replies.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import aiohttp

from dripgate.errors import ErrorKind

logger = logging.getLogger(__name__)

CLAIM_ENDPOINT = "/partners/distributors/claim"
CAN_CLAIM_ENDPOINT = "/partners/distributors/can-claim"
CODE_ENDPOINT = "/partners/distributors/code"
DISTRIBUTORS_ENDPOINT = "/partners/distributors"
GLOBAL_RULES_ENDPOINT = "/partners/global-rules"
TAP_CLOSED_MESSAGE = "Faucet temporarily unavailable: daily limit reached"
MAX_CLAIM_CODES = 100


class PartnerApiError(Exception):
    """A partner API call failed.

    Parameters
    ----------
    message : str
        Description of the failure.
    status : int, optional
        HTTP status, absent for transport failures.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


class RuleKey(str, Enum):
    """Drip rules understood by the partner API."""

    TOTAL_DRIP_PER_INTERVAL = "TOTAL_DRIP_PER_INTERVAL"
    TOTAL_DRIP_INTERVAL = "TOTAL_DRIP_INTERVAL"
    DRIP_PER_INTERVAL = "DRIP_PER_INTERVAL"
    DRIP_INTERVAL = "DRIP_INTERVAL"
    MAINNET_BALANCE = "MAINNET_BALANCE"
    MAINNET_TRANSACTION_COUNT = "MAINNET_TRANSACTION_COUNT"
    DEFAULT_DRIP_AMOUNT = "DEFAULT_DRIP_AMOUNT"


class DripInterval(str, Enum):
    ONE_DAY = "ONE_DAY"
    TWELVE_HOURS = "TWELVE_HOURS"
    ONE_HOUR = "ONE_HOUR"
    THIRTY_MINUTES = "THIRTY_MINUTES"


_INTERVAL_RULES = {RuleKey.TOTAL_DRIP_INTERVAL, RuleKey.DRIP_INTERVAL}


def parse_rule(key: str, raw: str) -> tuple[RuleKey, str | int | float]:
    """Validate a rule key and coerce its value.

    Interval rules take a ``DripInterval`` name; every other rule is numeric.

    Raises
    ------
    ValueError
        Unknown key or a value of the wrong shape.
    """
    try:
        rule = RuleKey(key)
    except ValueError:
        known = ", ".join(k.value for k in RuleKey)
        raise ValueError(f"Unknown rule {key!r}; expected one of: {known}") from None

    if rule in _INTERVAL_RULES:
        try:
            return rule, DripInterval(raw).value
        except ValueError:
            allowed = ", ".join(i.value for i in DripInterval)
            raise ValueError(f"{key} must be one of: {allowed}") from None

    try:
        number = float(raw)
    except ValueError:
        raise ValueError(f"{key} requires a numeric value, got {raw!r}") from None
    return rule, int(number) if number.is_integer() else number


@dataclass
class ClaimSubmission:
    """Claim forwarded to the upstream faucet."""

    address: str
    client_ip: str
    visitor_id: str

    def to_payload(self) -> dict[str, str]:
        return {"address": self.address, "ip": self.client_ip, "visitorId": self.visitor_id}


@dataclass
class ClaimSubmissionResult:
    """Interpreted upstream response."""

    success: bool
    transaction_id: str | None = None
    message: str | None = None
    amount: Any = None
    tap_closed: bool = False
    error_kind: ErrorKind | None = None


@dataclass
class EligibilityResult:
    """Reply to a can-claim check."""

    can_claim: bool
    amount: Any = None
    amount_in_wei: str | None = None
    tap_closed: bool = False
    message: str | None = None


@dataclass
class TransactionStatus:
    """Upstream view of a submitted claim."""

    transaction_id: str
    status: str | None = None
    tx_hash: str | None = None
    amount: Any = None
    block_number: int | None = None
    gas_used: str | None = None

    @property
    def settled(self) -> bool:
        return self.status in ("processed", "failed")


@dataclass
class RuleSyncPlan:
    """Changes needed to bring a distributor's rules in line."""

    delete: dict[str, str] = field(default_factory=dict)
    upsert: dict[str, Any] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.delete and not self.upsert


def _decode_body(raw: bytes) -> tuple[Any, str]:
    text = raw.decode("utf-8", errors="replace")
    if not raw:
        return None, text
    try:
        return json.loads(raw), text
    except ValueError:
        return None, text


class FaucetApiClient:
    """Partner faucet API client.

    Claims get one attempt each; retries are left to the caller.

    Parameters
    ----------
    session : aiohttp.ClientSession
        Shared HTTP session.
    base_url : str
        Upstream API root, e.g. ``https://api.faucet.quicknode.com``.
    timeout : float
        Seconds allowed per request.
    """

    def __init__(self, session: aiohttp.ClientSession, base_url: str, timeout: float = 10.0):
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def claim_url(self) -> str:
        return f"{self._base_url}{CLAIM_ENDPOINT}"

    def _headers(self, api_key: str) -> dict[str, str]:
        return {"content-type": "application/json", "x-partner-api-key": api_key}

    async def submit_claim(
        self,
        api_key: str,
        submission: ClaimSubmission,
        request_id: str | None = None,
    ) -> ClaimSubmissionResult:
        """Forward a claim upstream and interpret the response.

        Parameters
        ----------
        api_key : str
            Partner API key of the distributor.
        submission : ClaimSubmission
            Claim to submit.
        request_id : str, optional
            Correlation id for logs.

        Returns
        -------
        ClaimSubmissionResult
            Never raises for transport or upstream errors.
        """
        logger.info(
            "Submitting claim upstream",
            extra={"request_id": request_id, "address": submission.address},
        )
        try:
            async with self._session.post(
                self.claim_url,
                json=submission.to_payload(),
                headers=self._headers(api_key),
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                raw = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Upstream request failed",
                extra={"request_id": request_id, "error": str(e) or type(e).__name__},
            )
            return ClaimSubmissionResult(
                success=False,
                message="upstream request failed",
                error_kind=ErrorKind.INFRASTRUCTURE,
            )

        body, text = _decode_body(raw)
        return self._interpret(status, body, text, request_id)

    def _interpret(
        self, status: int, body: Any, text: str, request_id: str | None
    ) -> ClaimSubmissionResult:
        payload = body if isinstance(body, dict) else {}
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}

        if data.get("isTapClosed") is True:
            logger.warning(
                "Upstream tap closed", extra={"request_id": request_id, "status": status}
            )
            return ClaimSubmissionResult(
                success=False,
                message=TAP_CLOSED_MESSAGE,
                tap_closed=True,
                error_kind=ErrorKind.UPSTREAM_UNAVAILABLE,
            )

        if 200 <= status < 300:
            if payload.get("success") is False:
                return ClaimSubmissionResult(
                    success=False,
                    message=payload.get("message") or "Claim rejected",
                    error_kind=ErrorKind.UPSTREAM,
                )
            tx_id = payload.get("transactionId")
            if tx_id in (None, ""):
                logger.warning(
                    "Upstream accepted claim without a transaction id",
                    extra={"request_id": request_id, "status": status, "body": text[:500]},
                )
                return ClaimSubmissionResult(
                    success=False,
                    message=f"upstream error ({status})",
                    error_kind=ErrorKind.UPSTREAM,
                )
            return ClaimSubmissionResult(
                success=True,
                transaction_id=str(tx_id),
                message=payload.get("message"),
                amount=data.get("amount"),
            )

        message = payload.get("message") or payload.get("error")
        logger.warning(
            "Upstream rejected claim",
            extra={"request_id": request_id, "status": status, "body": text[:500]},
        )
        return ClaimSubmissionResult(
            success=False,
            message=str(message) if message else f"upstream error ({status})",
            error_kind=ErrorKind.UPSTREAM_UNAVAILABLE if status >= 500 else ErrorKind.UPSTREAM,
        )

    async def _call(
        self,
        method: str,
        path: str,
        api_key: str,
        payload: Mapping[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(api_key),
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                raw = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Partner API request failed",
                extra={"method": method, "path": path, "error": str(e) or type(e).__name__},
            )
            raise PartnerApiError(f"{method} {path} failed: {str(e) or type(e).__name__}") from e

        body, text = _decode_body(raw)
        if not 200 <= status < 300:
            logger.warning(
                "Partner API error",
                extra={"method": method, "path": path, "status": status, "body": text[:500]},
            )
            detail = (body.get("message") or body.get("error")) if isinstance(body, dict) else None
            raise PartnerApiError(
                f"Partner API error ({status}): {detail or text[:200] or 'no body'}",
                status=status,
            )
        return body

    async def can_claim(self, api_key: str, submission: ClaimSubmission) -> EligibilityResult:
        """Ask the upstream faucet whether ``submission`` would be accepted."""
        body = await self._call("POST", CAN_CLAIM_ENDPOINT, api_key, submission.to_payload())
        payload = body if isinstance(body, dict) else {}
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        return EligibilityResult(
            can_claim=data.get("canClaim") is True,
            amount=data.get("amount"),
            amount_in_wei=data.get("amountInWei"),
            tap_closed=data.get("isTapClosed") is True,
            message=payload.get("message"),
        )

    async def transaction_status(self, api_key: str, transaction_id: str) -> TransactionStatus:
        """Look up a submitted claim by its upstream transaction id."""
        body = await self._call(
            "GET", CLAIM_ENDPOINT, api_key, params={"transactionId": transaction_id}
        )
        payload = body if isinstance(body, dict) else {}
        return TransactionStatus(
            transaction_id=transaction_id,
            status=payload.get("status"),
            tx_hash=payload.get("txHash"),
            amount=payload.get("amount"),
            block_number=payload.get("blockNumber"),
            gas_used=payload.get("gasUsed"),
        )

    async def create_claim_codes(self, api_key: str, count: int) -> list[str]:
        """Create one-off claim codes, at most ``MAX_CLAIM_CODES`` per call."""
        if not 1 <= count <= MAX_CLAIM_CODES:
            raise ValueError(f"count must be between 1 and {MAX_CLAIM_CODES}")
        body = await self._call("POST", CODE_ENDPOINT, api_key, {"count": count})
        return list(body.get("codes", [])) if isinstance(body, dict) else []

    async def claim_codes(self, api_key: str) -> list[dict[str, Any]]:
        body = await self._call("GET", CODE_ENDPOINT, api_key)
        return body if isinstance(body, list) else []

    # Partner administration

    async def list_distributors(self, api_key: str) -> Any:
        return await self._call("GET", DISTRIBUTORS_ENDPOINT, api_key)

    async def create_distributor(self, api_key: str, name: str, rps: int | None = None) -> Any:
        payload: dict[str, Any] = {"name": name}
        if rps is not None:
            payload["rps"] = rps
        return await self._call("POST", DISTRIBUTORS_ENDPOINT, api_key, payload)

    async def delete_distributor(self, api_key: str, distributor_id: str) -> None:
        await self._call("DELETE", f"{DISTRIBUTORS_ENDPOINT}/{distributor_id}", api_key)

    async def distributor_rules(self, api_key: str, distributor_id: str) -> list[dict[str, Any]]:
        """Rules currently set on an upstream distributor."""
        body = await self._call("GET", f"{DISTRIBUTORS_ENDPOINT}/{distributor_id}/rules", api_key)
        rules = body.get("data") if isinstance(body, dict) else body
        return rules if isinstance(rules, list) else []

    async def set_distributor_rule(
        self, api_key: str, distributor_id: str, key: RuleKey, value: Any
    ) -> Any:
        return await self._call(
            "POST",
            f"{DISTRIBUTORS_ENDPOINT}/{distributor_id}/rules",
            api_key,
            {"key": RuleKey(key).value, "value": value},
        )

    async def delete_distributor_rule(
        self, api_key: str, distributor_id: str, rule_uuid: str
    ) -> None:
        await self._call(
            "DELETE", f"{DISTRIBUTORS_ENDPOINT}/{distributor_id}/rules/{rule_uuid}", api_key
        )

    async def sync_distributor_rules(
        self, api_key: str, distributor_id: str, rules: Mapping[RuleKey, Any]
    ) -> RuleSyncPlan:
        """Make the upstream rule set equal ``rules``.

        Rules absent from ``rules`` are deleted; missing or changed ones are
        set. Unchanged rules are left alone.
        """
        existing = {
            r["key"]: r
            for r in await self.distributor_rules(api_key, distributor_id)
            if isinstance(r, dict) and "key" in r
        }
        wanted = {RuleKey(k).value: v for k, v in rules.items()}

        plan = RuleSyncPlan()
        for key, rule in existing.items():
            if key not in wanted:
                plan.delete[key] = rule.get("uuid")
        for key, value in wanted.items():
            if key not in existing or existing[key].get("value") != value:
                plan.upsert[key] = value

        for key, rule_uuid in plan.delete.items():
            logger.info("Deleting distributor rule", extra={"rule": key, "uuid": rule_uuid})
            await self.delete_distributor_rule(api_key, distributor_id, rule_uuid)
        for key, value in plan.upsert.items():
            logger.info("Setting distributor rule", extra={"rule": key, "value": value})
            await self.set_distributor_rule(api_key, distributor_id, RuleKey(key), value)
        return plan

    async def set_global_rule(self, api_key: str, key: RuleKey, value: Any) -> Any:
        return await self._call(
            "POST", GLOBAL_RULES_ENDPOINT, api_key, {"key": RuleKey(key).value, "value": value}
        )

    async def delete_global_rule(self, api_key: str, rule_uuid: str) -> None:
        await self._call("DELETE", f"{GLOBAL_RULES_ENDPOINT}/{rule_uuid}", api_key)

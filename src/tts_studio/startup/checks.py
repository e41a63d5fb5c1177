from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from tts_studio.core.logging import get_logger
from tts_studio.forwarder import ForwarderConfig


class CheckStatus(str, Enum):
    OK = "ok"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    details: str


def run_startup_checks(*, config: ForwarderConfig) -> List[CheckResult]:
    """
    Runs fast preflight checks at process start.
    Keep these checks quick and side-effect-free (no network calls).
    """
    log = get_logger(component="startup_checks")
    results: List[CheckResult] = [
        _check_openai_key(config),
        _check_base_url(config),
    ]

    # Summary
    counts: Dict[CheckStatus, int] = {s: sum(1 for r in results if r.status == s) for s in CheckStatus}
    log.info(
        "startup_checks_complete",
        ok=counts[CheckStatus.OK],
        warn=counts[CheckStatus.WARN],
        fail=counts[CheckStatus.FAIL],
    )
    for r in results:
        log.info("startup_check", name=r.name, status=r.status.value, details=r.details)

    return results


def _check_openai_key(config: ForwarderConfig) -> CheckResult:
    name = "openai_api_key"
    if not config.configured:
        # The gateway still starts; /api/tts answers 501 until a key is set.
        return CheckResult(
            name=name,
            status=CheckStatus.WARN,
            details="OPENAI_API_KEY is not set; cloud TTS will answer 501",
        )
    return CheckResult(name=name, status=CheckStatus.OK, details="OPENAI_API_KEY present (model=%s)" % config.model)


def _check_base_url(config: ForwarderConfig) -> CheckResult:
    name = "openai_base_url"
    url = config.base_url or ""
    if not url.startswith(("http://", "https://")):
        return CheckResult(name=name, status=CheckStatus.FAIL, details="OPENAI_BASE_URL is not an http(s) URL: %r" % url)
    return CheckResult(name=name, status=CheckStatus.OK, details=url)

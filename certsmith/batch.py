"""Batch issuance over one shared, read-only CertificateAuthority."""
from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .authority import CaSource, CertificateAuthority, PasswordProvider
from .csr import filter_csr_files, find_csr_files
from .errors import describe
from .issuance import (
    IssuanceJob,
    IssuanceOutcome,
    PassphraseProvider,
    SanInput,
    coerce_sans,
    issue_from_csr,
    request_passphrase,
)
from .keys import Secret
from .prompts import confirmed_passphrase_provider
from .settings import Settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConcurrencyPolicy:
    parallel: bool = True
    # None: one worker per item
    max_workers: Optional[int] = 4

    @staticmethod
    def sequential() -> "ConcurrencyPolicy":
        return ConcurrencyPolicy(parallel=False, max_workers=1)

    @staticmethod
    def from_settings(settings: Settings) -> "ConcurrencyPolicy":
        return ConcurrencyPolicy(parallel=settings.PARALLEL, max_workers=settings.MAX_WORKERS)

    def workers_for(self, count: int) -> int:
        if not self.parallel or count <= 1:
            return 1
        if self.max_workers is None:
            return count
        return max(1, min(self.max_workers, count))


@dataclass
class BatchResult:
    successful: int = 0
    failed: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)
    issued: List[IssuanceOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.successful + self.failed

    def as_dict(self) -> dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "errors": [{"identifier": ident, "message": msg} for ident, msg in self.errors],
        }


class BatchCoordinator:
    """Runs one IssuanceJob per identifier.

    The CA handle is shared by reference; jobs only read it. A failing job is
    recorded and never stops its siblings. Errors are reported in input
    order whatever the completion order was.
    """

    def __init__(self, ca: CertificateAuthority, settings: Settings) -> None:
        self.ca = ca
        self.settings = settings

    def run(
        self,
        identifiers: Sequence[str],
        common_sans: SanInput = None,
        password_protect: bool = False,
        passphrase_provider: Optional[PassphraseProvider] = None,
        policy: Optional[ConcurrencyPolicy] = None,
    ) -> BatchResult:
        policy = policy or ConcurrencyPolicy.from_settings(self.settings)
        sans = coerce_sans(common_sans)
        items = list(identifiers)
        failures: Dict[int, Tuple[str, str]] = {}
        outcomes: Dict[int, IssuanceOutcome] = {}

        passphrases = self._collect_passphrases(items, password_protect, passphrase_provider, failures)
        pending = [i for i in range(len(items)) if i not in failures]

        workers = policy.workers_for(len(pending))
        log.info("Issuing %d certificates with %d worker(s)", len(items), workers)

        if workers == 1:
            for i in pending:
                self._run_one(i, items[i], sans, passphrases.get(i), outcomes, failures)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="certsmith") as pool:
                futures: Dict[Future, int] = {
                    pool.submit(self._issue, items[i], sans, passphrases.get(i)): i for i in pending
                }
                for fut in as_completed(futures):
                    i = futures[fut]
                    try:
                        outcomes[i] = fut.result()
                    except Exception as exc:
                        self._record_failure(i, items[i], exc, failures)

        result = BatchResult(
            successful=len(outcomes),
            failed=len(failures),
            errors=[failures[i] for i in sorted(failures)],
            issued=[outcomes[i] for i in sorted(outcomes)],
        )
        log.info("Batch complete: %d succeeded, %d failed", result.successful, result.failed)
        return result

    def _issue(self, identifier: str, sans, passphrase: Optional[Secret]) -> IssuanceOutcome:
        return IssuanceJob(identifier, sans, self.settings, self.ca, passphrase).run()

    def _run_one(self, i, identifier, sans, passphrase, outcomes, failures) -> None:
        try:
            outcomes[i] = self._issue(identifier, sans, passphrase)
        except Exception as exc:
            self._record_failure(i, identifier, exc, failures)

    @staticmethod
    def _record_failure(i: int, identifier: str, exc: BaseException, failures) -> None:
        log.warning("%s failed: %s", identifier, describe(exc), extra={"identifier": identifier})
        failures[i] = (identifier, describe(exc))

    def _collect_passphrases(self, items, password_protect, provider, failures) -> Dict[int, Secret]:
        # prompting happens here, before any job runs
        out: Dict[int, Secret] = {}
        if not password_protect:
            return out
        if provider is None:
            provider = confirmed_passphrase_provider
        for i, identifier in enumerate(items):
            try:
                out[i] = request_passphrase(identifier, provider)
            except Exception as exc:
                self._record_failure(i, identifier, exc, failures)
        return out


def issue_batch(
    identifiers: Sequence[str],
    common_sans: SanInput,
    password_protect: bool,
    ca: CertificateAuthority,
    concurrency_policy: Optional[ConcurrencyPolicy] = None,
    settings: Optional[Settings] = None,
    passphrase_provider: Optional[PassphraseProvider] = None,
) -> BatchResult:
    coordinator = BatchCoordinator(ca, settings or Settings.from_env())
    return coordinator.run(identifiers, common_sans, password_protect, passphrase_provider, concurrency_policy)


def issue_batch_from_paths(
    cert_path: "os.PathLike[str] | str",
    key_path: "os.PathLike[str] | str",
    identifiers: Sequence[str],
    common_sans: SanInput = None,
    password_protect: bool = False,
    password_provider: Optional[PasswordProvider] = None,
    concurrency_policy: Optional[ConcurrencyPolicy] = None,
    settings: Optional[Settings] = None,
    passphrase_provider: Optional[PassphraseProvider] = None,
) -> BatchResult:
    """Unlock the CA once, run the batch, then close the CA.

    A CA load failure is raised before any job starts.
    """
    with CaSource(cert_path, key_path).unlock(password_provider) as ca:
        return issue_batch(
            identifiers,
            common_sans,
            password_protect,
            ca,
            concurrency_policy=concurrency_policy,
            settings=settings,
            passphrase_provider=passphrase_provider,
        )


def sign_csr_directory(
    directory: "os.PathLike[str] | str",
    ca: CertificateAuthority,
    settings: Optional[Settings] = None,
    pattern: Optional[str] = None,
) -> BatchResult:
    """Sign every ``*.csr`` in ``directory`` (optionally filtered by name), in name order."""
    settings = settings or Settings.from_env()
    files = find_csr_files(Path(directory))
    if pattern:
        files = filter_csr_files(files, pattern)
    result = BatchResult()
    for f in files:
        try:
            result.issued.append(issue_from_csr(f.name, f.path, ca, settings))
            result.successful += 1
        except Exception as exc:
            log.warning("%s failed: %s", f.name, describe(exc), extra={"identifier": f.name})
            result.errors.append((f.name, describe(exc)))
            result.failed += 1
    return result
